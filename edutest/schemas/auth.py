# edutest/schemas/auth.py
from pydantic import BaseModel, EmailStr, ConfigDict


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    name: str
    role: str  # "teacher" / "student"


class Principal(BaseModel):
    """The authenticated identity attached to a request."""

    id: int
    email: EmailStr
    name: str
    role: str

    model_config = ConfigDict(from_attributes=True)
