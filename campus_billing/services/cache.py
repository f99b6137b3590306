# campus_billing/services/cache.py - Page-cache invalidation hook
import logging
import threading
from typing import Callable, Iterable, List
from uuid import UUID

from campus_billing.core.config import settings

logger = logging.getLogger(__name__)

Listener = Callable[[str], None]

PAYMENTS_PATH = "/dashboard/finance/payments"
INVOICES_PATH = "/dashboard/finance/invoices"
FEE_STRUCTURES_PATH = "/dashboard/finance/fee-structures"


def invoice_path(invoice_id: UUID) -> str:
    return f"{INVOICES_PATH}/{invoice_id}"


def fee_structure_path(fee_structure_id: UUID) -> str:
    return f"{FEE_STRUCTURES_PATH}/{fee_structure_id}"


def student_path(student_id: UUID) -> str:
    return f"/dashboard/students/{student_id}"


def ledger_paths(invoice_id: UUID, student_id: UUID) -> List[str]:
    """Pages showing an invoice's paid amount, balance or status"""
    return [PAYMENTS_PATH, INVOICES_PATH, invoice_path(invoice_id), student_path(student_id)]


class PageCacheInvalidator:
    """
    Fan-out of invalidated paths to whoever renders cached pages.

    Listeners are called synchronously after a mutation has committed. A
    listener that raises is logged and skipped; the mutation is already
    durable and must not be reported as failed.
    """

    def __init__(self):
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def register(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unregister(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def invalidate(self, path: str) -> None:
        if not settings.CACHE_INVALIDATION_ENABLED:
            return
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(path)
            except Exception as e:
                logger.warning(f"Cache invalidation for {path} failed: {e}")

    def invalidate_many(self, paths: Iterable[str]) -> None:
        for path in dict.fromkeys(paths):
            self.invalidate(path)


page_cache = PageCacheInvalidator()

__all__ = [
    "PageCacheInvalidator", "page_cache",
    "ledger_paths", "invoice_path", "student_path",
    "fee_structure_path",
    "PAYMENTS_PATH", "INVOICES_PATH", "FEE_STRUCTURES_PATH",
]
