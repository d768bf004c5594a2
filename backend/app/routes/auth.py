from fastapi import APIRouter, Depends

from ..models import User
from ..schemas import User as UserSchema
from ..auth import get_current_user

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/user", response_model=UserSchema)
def read_current_user(current_user: User = Depends(get_current_user)):
    """Caller's user record, provisioned on first request"""
    return current_user
