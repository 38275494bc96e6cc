# points_ledger/core/config.py

import json
from decimal import Decimal
from typing import Any, Dict, List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Пакеты по умолчанию: баллы, сумма в наирах, курс
DEFAULT_POINT_PACKAGES_JSON = (
    '[{"points": 200000, "local_amount": 150000, "exchange_rate": "1.33"},'
    ' {"points": 500000, "local_amount": 350000, "exchange_rate": "1.43"},'
    ' {"points": 1000000, "local_amount": 650000, "exchange_rate": "1.54"}]'
)


class Settings(BaseSettings):
    # Настройки базы данных
    DATABASE_USER: str = "postgres"
    DATABASE_PASSWORD: str = "postgres"
    DATABASE_HOST: str = "localhost"
    DATABASE_PORT: int = 5432
    DATABASE_NAME: str = "points_ledger"
    # Полный URL, если задан, имеет приоритет (sqlite для локальной разработки и т.п.)
    DATABASE_URL_OVERRIDE: str | None = None

    # Настройки JWT токенов
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379

    # Платежный провайдер: 'paystack' или 'flutterwave'
    PAYMENT_PROVIDER: str = "flutterwave"
    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    FLUTTERWAVE_SECRET_KEY: str = ""
    FLUTTERWAVE_BASE_URL: str = "https://api.flutterwave.com/v3"
    FLUTTERWAVE_WEBHOOK_HASH: str = ""
    GATEWAY_TIMEOUT_SECONDS: float = 20.0
    GATEWAY_INIT_RETRIES: int = 2

    CURRENCY: str = "NGN"
    APP_URL: str = "http://localhost:5000"

    # Каталог пакетов
    POINT_PACKAGES_JSON: str = Field(default=DEFAULT_POINT_PACKAGES_JSON)
    POINT_PACKAGES: List[Dict[str, Any]] = Field(default=[], validate_default=True)
    # Не больше 4 знаков после запятой: столько хранит point_purchases.exchange_rate
    CUSTOM_POINTS_EXCHANGE_RATE: Decimal = Field(default=Decimal("1.33"), gt=0, decimal_places=4)
    MIN_CUSTOM_POINTS: int = 10_000
    MAX_CUSTOM_POINTS: int = 2_000_000

    # Через сколько минут "зависшая" покупка перепроверяется фоновой задачей
    PENDING_RECONCILE_AFTER_MINUTES: int = 30

    RATE_LIMIT_ENABLED: bool = True
    PURCHASE_RATE_LIMIT: str = "10/minute"
    TRANSFER_RATE_LIMIT: str = "20/minute"
    # По умолчанию счетчики лимитов хранятся в Redis (REDIS_URL)
    RATE_LIMIT_STORAGE_URI: str | None = None

    CORS_ORIGINS_STR: str = Field(default="http://localhost:5000,http://localhost:5173", alias="CORS_ORIGINS")

    @property
    def CORS_ORIGINS(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS_STR.split(',') if origin.strip()]

    @field_validator("POINT_PACKAGES", mode="before")
    def parse_point_packages(cls, v, values):
        # Разбираем JSON-строку из соседнего поля
        json_str = values.data.get("POINT_PACKAGES_JSON")
        if json_str and not v:
            return json.loads(json_str)
        return v

    @property
    def REDIS_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}"

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"postgresql+psycopg2://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"

    model_config = SettingsConfigDict(env_file=".env", populate_by_name=True)

settings = Settings()
