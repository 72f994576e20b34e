"""
Password hashing, password policy and access tokens.
"""
import re
from datetime import datetime, timedelta
from uuid import UUID

from jose import JWTError, jwt
from passlib.context import CryptContext

from config import get_settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

_SPECIALS = "@$!%*?&"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def password_problems(password: str) -> list[str]:
    """Everything wrong with ``password``; empty when it meets the policy."""
    problems = []
    if len(password) < 8:
        problems.append("at least 8 characters")
    if not re.search(r"[a-z]", password):
        problems.append("a lowercase letter")
    if not re.search(r"[A-Z]", password):
        problems.append("an uppercase letter")
    if not re.search(r"\d", password):
        problems.append("a number")
    if not any(c in _SPECIALS for c in password):
        problems.append(f"a special character ({_SPECIALS})")
    return problems


def issue_token(user_id: UUID, expires_delta: timedelta | None = None) -> str:
    """Bearer token naming the user. Admin rights are read from the user row, not the token."""
    settings = get_settings()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    claims = {
        "sub": str(user_id),
        "exp": expire,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def read_token(token: str) -> UUID | None:
    """User id carried by a valid token, or None when it is missing, expired or forged."""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        subject = payload.get("sub")
        return UUID(subject) if subject else None
    except (JWTError, ValueError):
        return None
