"""Password hashing and bearer tokens for engine users."""
from datetime import timedelta
from typing import Any, Dict, Iterable, Optional
import uuid

from jose import JWTError, jwt
from passlib.context import CryptContext

from lastmile.config import settings
from lastmile.core import clock


pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

TOKEN_TYPE = "access"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check a password; malformed or unknown hashes count as a mismatch."""
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(
    user_id: uuid.UUID,
    roles: Iterable[str] = (),
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Issue a signed token for a user.

    The role names ride along as a claim for clients that want to shape
    their UI; authorization always re-reads the user's roles from the database.
    """
    issued_at = clock.utcnow()
    expire = issued_at + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))

    claims: Dict[str, Any] = {
        "sub": str(user_id),
        "roles": list(roles),
        "iat": issued_at,
        "exp": expire,
        "jti": uuid.uuid4().hex,
        "type": TOKEN_TYPE,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


def verify_access_token(token: str) -> Optional[str]:
    """Subject (user id) of a valid access token, or None."""
    payload = decode_token(token)
    if payload is None or payload.get("type") != TOKEN_TYPE:
        return None
    return payload.get("sub")
