# campus_billing/api/errors.py - Ledger errors as HTTP responses
from fastapi import HTTPException, status

from campus_billing.services.errors import (
    LedgerError,
    NotFoundError,
    PermissionDeniedError,
    DuplicateInvoiceError,
    DuplicateReferenceError,
    InvoiceHasPaymentsError,
    DuplicateFeeStructureError,
    FeeStructureInUseError,
    TransactionError,
)


def to_http_exception(error: LedgerError) -> HTTPException:
    """Map a ledger error to the status code the client should act on"""
    if isinstance(error, NotFoundError):
        # Stale data on the client; it should refresh
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)
    if isinstance(error, PermissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=error.message)
    if isinstance(error, (
        DuplicateInvoiceError,
        DuplicateReferenceError,
        DuplicateFeeStructureError,
        InvoiceHasPaymentsError,
        FeeStructureInUseError,
    )):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error.message)
    if isinstance(error, TransactionError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"{error.message}. Check the ledger before resubmitting.",
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.message)
