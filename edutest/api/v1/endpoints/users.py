# edutest/api/v1/endpoints/users.py
from fastapi import APIRouter, Depends

from edutest.schemas.auth import Principal
from edutest.core.security import get_current_user

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=Principal)
def read_me(current_user: Principal = Depends(get_current_user)):
    return current_user
