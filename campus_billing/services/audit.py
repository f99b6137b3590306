# campus_billing/services/audit.py - Best-effort audit trail
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from campus_billing.core.config import settings
from campus_billing.models.audit import UserLog
from campus_billing.models.user import User

logger = logging.getLogger(__name__)


def record_action(
    db: Session,
    user: User,
    action: str,
    target_table: str,
    target_id: Optional[UUID],
    description: str,
) -> Optional[UserLog]:
    """
    Append a user_logs row in its own transaction.

    Call only after the business change has been committed. A failure here
    is logged and swallowed so that it never turns a committed ledger
    mutation into an error for the caller.
    """
    if not settings.AUDIT_LOG_ENABLED:
        return None

    entry = UserLog(
        user_id=user.id,
        action=action,
        target_table=target_table,
        target_id=target_id,
        description=description,
    )
    try:
        db.add(entry)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Audit log write failed ({action} {target_table} {target_id}): {e}")
        return None
    return entry


__all__ = ["record_action"]
