# campus_billing/core/permissions.py - Capability table for billing actions
from typing import Dict, List

from campus_billing.models.user import User, UserRole

FINANCE_ROLES = [UserRole.ADMIN.value, UserRole.ACCOUNTANT.value]
INVOICE_MANAGER_ROLES = [UserRole.ADMIN.value, UserRole.ACCOUNTANT.value, UserRole.REGISTRAR.value]

# action -> roles allowed to perform it
CAPABILITIES: Dict[str, List[str]] = {
    "record_payment": FINANCE_ROLES,
    "update_payment": FINANCE_ROLES,
    "delete_payment": FINANCE_ROLES,
    "reconcile_invoice": FINANCE_ROLES,
    "create_invoice": INVOICE_MANAGER_ROLES,
    "update_invoice": FINANCE_ROLES,
    "delete_invoice": FINANCE_ROLES,
    "manage_fee_structures": FINANCE_ROLES,
    "view_billing": INVOICE_MANAGER_ROLES,
    "view_own_billing": INVOICE_MANAGER_ROLES + [UserRole.STUDENT.value],
}


def authorize(user: User, action: str) -> bool:
    """Return True when the user may perform the action. Unknown actions are denied."""
    if user is None or not user.is_active:
        return False
    allowed = CAPABILITIES.get(action)
    if not allowed:
        return False
    return user.has_any_role(allowed)


__all__ = ["authorize", "CAPABILITIES", "FINANCE_ROLES", "INVOICE_MANAGER_ROLES"]
