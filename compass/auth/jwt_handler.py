import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import bcrypt
from jose import JWTError, jwt

from compass.config import get_settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

BCRYPT_ROUNDS = 12

# bcrypt only looks at the first 72 bytes; bcrypt 5.0+ raises on longer input
BCRYPT_MAX_PASSWORD_BYTES = 72


def _password_bytes(password: str) -> bytes:
    b = password.encode("utf-8")
    return b[:BCRYPT_MAX_PASSWORD_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against bcrypt hash. Returns False on invalid hash format."""
    if not hashed_password or not isinstance(hashed_password, str):
        return False
    if len(hashed_password) != 60 or not hashed_password.startswith(("$2a$", "$2b$", "$2y$")):
        return False
    try:
        return bcrypt.checkpw(_password_bytes(plain_password), hashed_password.encode("utf-8"))
    except (ValueError, TypeError) as e:
        logger.warning("bcrypt.checkpw failed (hash may be incompatible): %s", e)
        return False


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    claims = {"sub": user_id, "type": "access", "exp": expire}
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[dict[str, Any]]:
    """Decoded claims for a valid, unexpired token, else None."""
    try:
        return jwt.decode(token, get_settings().jwt_secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None
