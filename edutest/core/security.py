# edutest/core/security.py
"""
Password hashing, JWT tokens and the pluggable identity provider.

The current principal is resolved through whichever IdentityProvider the
``get_identity_provider`` dependency returns, so tests (or a demo deployment)
can swap the database-backed provider for another one.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Protocol

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from edutest.core.config import settings
from edutest.db.session import get_db
from edutest.models.user import User
from edutest.schemas.auth import Principal

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_PREFIX}/auth/token")

ROLES = ("teacher", "student")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    return pwd_context.verify(plain_password, password_hash)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> str | None:
    """Return the subject (email) of a valid token, or None."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.info(f"Rejected access token: {e}")
        return None
    return payload.get("sub")


class IdentityProvider(Protocol):
    def authenticate(self, db: Session, email: str, password: str) -> Principal | None:
        ...

    def resolve_token(self, db: Session, token: str) -> Principal | None:
        ...


class DatabaseIdentityProvider:
    """Users live in the ``users`` table with bcrypt password hashes."""

    def authenticate(self, db: Session, email: str, password: str) -> Principal | None:
        user = db.query(User).filter(User.email == email).first()
        if user is None or not verify_password(password, user.password_hash):
            return None
        return Principal.model_validate(user)

    def resolve_token(self, db: Session, token: str) -> Principal | None:
        email = decode_access_token(token)
        if email is None:
            return None
        user = db.query(User).filter(User.email == email).first()
        if user is None:
            return None
        return Principal.model_validate(user)


DEMO_USERS = (
    {"email": "teacher@example.com", "name": "Demo Teacher", "role": "teacher"},
    {"email": "student@example.com", "name": "Demo Student", "role": "student"},
)


class DemoIdentityProvider:
    """
    Hardcoded demo accounts; any password is accepted.

    The demo users are created in the ``users`` table on first login so that
    tests and submissions can reference them.
    """

    def __init__(self, users=DEMO_USERS):
        self._users = {u["email"].lower(): u for u in users}

    def _ensure_user(self, db: Session, email: str) -> User | None:
        entry = self._users.get(email.lower())
        if entry is None:
            return None
        user = db.query(User).filter(User.email == entry["email"]).first()
        if user is None:
            user = User(
                email=entry["email"],
                name=entry["name"],
                role=entry["role"],
                password_hash="!demo",
            )
            db.add(user)
            db.commit()
            db.refresh(user)
        return user

    def authenticate(self, db: Session, email: str, password: str) -> Principal | None:
        user = self._ensure_user(db, email)
        return Principal.model_validate(user) if user else None

    def resolve_token(self, db: Session, token: str) -> Principal | None:
        email = decode_access_token(token)
        if email is None:
            return None
        user = self._ensure_user(db, email)
        return Principal.model_validate(user) if user else None


_identity_provider: IdentityProvider | None = None


def get_identity_provider() -> IdentityProvider:
    global _identity_provider
    if _identity_provider is None:
        if settings.IDENTITY_PROVIDER == "demo":
            _identity_provider = DemoIdentityProvider()
        else:
            _identity_provider = DatabaseIdentityProvider()
    return _identity_provider


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
    provider: IdentityProvider = Depends(get_identity_provider),
) -> Principal:
    principal = provider.resolve_token(db, token)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def get_current_teacher(current_user: Principal = Depends(get_current_user)) -> Principal:
    if current_user.role != "teacher":
        raise HTTPException(status_code=403, detail="Teacher role required")
    return current_user


def get_current_student(current_user: Principal = Depends(get_current_user)) -> Principal:
    if current_user.role != "student":
        raise HTTPException(status_code=403, detail="Student role required")
    return current_user
