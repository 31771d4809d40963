import time
import jwt
from typing import Any, Dict

from app.core.config import settings


def mint_access(user_id: str, ttl_s: int | None = None) -> str:
    """Tokens are issued by the auth service; this exists for local tooling and tests."""
    now = int(time.time())
    ttl = ttl_s if ttl_s is not None else settings.JWT_ACCESS_TTL_SECONDS
    return jwt.encode(
        {"sub": user_id, "iat": now, "exp": now + ttl, "typ": "access"},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALG,
    )


def decode_token(tok: str) -> Dict[str, Any]:
    return jwt.decode(tok, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
