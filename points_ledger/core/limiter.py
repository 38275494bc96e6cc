# points_ledger/core/limiter.py

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from points_ledger.core.config import settings


def key_func(request: Request) -> str:
    """
    Ключ лимита: ID участника (если уже аутентифицирован) -> IP-адрес.
    """
    member = getattr(request.state, "user", None)
    if member is not None and member.id:
        return f"member:{member.id}"
    return get_remote_address(request)


# Счетчики в Redis, общие для всех воркеров. 'moving-window' - скользящее окно.
limiter = Limiter(
    key_func=key_func,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI or settings.REDIS_URL,
    strategy="moving-window",
    enabled=settings.RATE_LIMIT_ENABLED,
)
