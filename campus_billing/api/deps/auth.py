# campus_billing/api/deps/auth.py - Bearer token authentication and role checks
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from sqlalchemy import select
from uuid import UUID
from typing import Dict, Any

from campus_billing.core.db import get_db
from campus_billing.core.permissions import authorize
from campus_billing.core.security import decode_token
from campus_billing.models.student import Student
from campus_billing.models.user import User

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Decode JWT and return user + claims.
    Returns: {"user": User, "claims": dict}
    """
    claims = decode_token(credentials.credentials)

    user_id_str = claims.get("sub")
    if not user_id_str:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing user ID"
        )

    try:
        user_uuid = UUID(user_id_str)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID format"
        )

    user = db.execute(
        select(User).where(User.id == user_uuid)
    ).scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account deactivated"
        )

    return {
        "user": user,
        "claims": claims
    }


def require_capability(action: str):
    """
    Create a dependency that requires a billing capability.
    Usage: @router.get("/", dependencies=[Depends(require_capability("view_billing"))])
    """
    def capability_checker(ctx=Depends(get_current_user)):
        if not authorize(ctx["user"], action):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied for {action.replace('_', ' ')}"
            )
        return ctx
    return capability_checker


def check_student_access(db: Session, user: User, student_id: UUID) -> None:
    """Finance staff see every student; a student only sees their own records."""
    if authorize(user, "view_billing"):
        return
    if authorize(user, "view_own_billing"):
        own = db.execute(
            select(Student.id).where(Student.user_id == user.id)
        ).scalar_one_or_none()
        if own == student_id:
            return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="You may only view your own billing records"
    )
