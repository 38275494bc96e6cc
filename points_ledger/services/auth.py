# points_ledger/services/auth.py

from datetime import datetime, timedelta, timezone
from jose import jwt

from points_ledger.core.config import settings


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Создает JWT токен. В `sub` ожидается ID участника."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
