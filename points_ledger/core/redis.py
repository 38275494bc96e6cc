# points_ledger/core/redis.py
import redis.asyncio as redis
from points_ledger.core.config import settings

# Используется только для выбора "главного" воркера при старте (см. main.py).
# Корректность операций с баллами Redis не обеспечивает - это делает БД.
redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
