"""Password hashing, bearer tokens and credential checks."""
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

import models
from config import Settings
from errors import ValidationError

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

EMAIL_PATTERN = re.compile(r"\S+@\S+\.\S+")
MIN_PASSWORD_LENGTH = 6


def configure_password_hashing(rounds: int) -> None:
    """Set the bcrypt work factor used for new hashes"""
    pwd_context.update(bcrypt__rounds=rounds)


def hash_password(password: str) -> str:
    """Hash a plain text password using the configured password hashing context"""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify if a plain text password matches its hashed version"""
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(user_id: int, settings: Settings,
                        expires_delta: Optional[timedelta] = None) -> str:
    """Issue a signed token carrying the user id"""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload = {"sub": str(user_id), "iat": now, "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str, settings: Settings) -> Optional[int]:
    """Return the user id inside a valid token, or None when it is invalid or expired"""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    subject = payload.get("sub")
    try:
        return int(subject)
    except (TypeError, ValueError):
        return None


def validate_registration(email: str, password: str, name: str) -> None:
    """Reject malformed registration input before touching storage"""
    if not email or not password or not name or not name.strip():
        raise ValidationError("Email, password, and name are required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not EMAIL_PATTERN.fullmatch(email.strip()):
        raise ValidationError("Invalid email format")


def authenticate(db: Session, email: str, password: str) -> Optional[models.User]:
    """Return the user matching the credentials, or None"""
    user = db.query(models.User).filter(models.User.email == email.strip()).first()
    if not user or not verify_password(password, user.password_hash):
        return None
    return user
