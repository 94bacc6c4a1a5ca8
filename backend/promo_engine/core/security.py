from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt

from promo_engine.core.config import settings


def create_access_token(subject: str, role: str = "owner", expires_delta: timedelta | None = None) -> str:
    """Issue an access token. Production tokens come from the auth service; this is for tests and the CLI."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_exp_minutes))
    to_encode = {"sub": subject, "role": role, "type": "access", "exp": expire}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Optional[dict[str, Any]]:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
