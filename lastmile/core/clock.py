"""Clock and one-time code source used by the engine."""
import secrets
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def generate_numeric_code(length: int = 6) -> str:
    """Generate a random numeric code with no leading-zero loss."""
    return "".join(str(secrets.randbelow(10)) for _ in range(length))
