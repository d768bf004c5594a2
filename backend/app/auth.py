from typing import Optional
from fastapi import Depends, HTTPException, status, Header
from sqlalchemy.orm import Session

from backend.database import get_db
from .models import User
from .bank_integration.connections import ConnectionManager


async def get_current_user_id(
    user_id: Optional[str] = Header(None, alias="X-User-ID")
) -> str:
    """
    Resolve the caller's identity.

    Authentication happens upstream; this only reads the opaque identity
    header it leaves behind.
    """
    if not user_id or not user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized - user identity required"
        )
    return user_id.strip()


async def get_current_user(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> User:
    """Caller's user row, provisioned on first request."""
    return ConnectionManager(db).ensure_user(user_id)
