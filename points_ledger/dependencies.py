# points_ledger/dependencies.py

import logging
from typing import AsyncIterator, Iterator
from contextlib import contextmanager

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from jose import JWTError, jwt

from points_ledger.clients.payment_gateway import GatewayPool, PaymentGateway, build_payment_gateway
from points_ledger.core.config import settings
from points_ledger.db.session import SessionLocal
from points_ledger.models.member import Member
from points_ledger.services.catalog import PackageCatalog, get_package_catalog

# --- Инициализация логгера ---
logger = logging.getLogger(__name__)

# --- Схемы аутентификации ---
bearer_scheme = HTTPBearer(auto_error=False)

# --- Управление сессией БД ---
def get_db_session_instance() -> Session:
    """Создает и возвращает экземпляр сессии БД."""
    return SessionLocal()

def get_db() -> Iterator[Session]:
    """
    Основная зависимость FastAPI для получения сессии БД.
    """
    db = get_db_session_instance()
    try:
        yield db
    finally:
        db.close()

@contextmanager
def get_db_context() -> Iterator[Session]:
    """
    Контекстный менеджер для получения сессии БД вне FastAPI (веб-хуки, фоновые задачи).
    """
    db = get_db_session_instance()
    try:
        yield db
    finally:
        db.close()

# --- Внешние зависимости сервиса баллов ---

async def get_payment_gateway() -> AsyncIterator[PaymentGateway]:
    """Адаптер платежного шлюза на время запроса. Подменяется в тестах."""
    gateway = build_payment_gateway()
    try:
        yield gateway
    finally:
        await gateway.aclose()

async def get_gateway_pool() -> AsyncIterator[GatewayPool]:
    """Адаптеры для подтверждения покупок: шлюз берется по провайдеру покупки."""
    pool = GatewayPool()
    try:
        yield pool
    finally:
        await pool.aclose()

def get_catalog() -> PackageCatalog:
    return get_package_catalog()

# --- Зависимости аутентификации и авторизации ---

def get_current_member(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db)
) -> Member:
    """
    ОБЯЗАТЕЛЬНАЯ зависимость.
    Требует валидный токен. Если его нет или он невалиден - ошибка 401.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not credentials:
        raise credentials_exception

    try:
        payload = jwt.decode(credentials.credentials, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        member_id: str = payload.get("sub")
        if member_id is None:
            logger.warning("Token payload is missing 'sub' (member_id).")
            raise credentials_exception
        member_id = int(member_id)
    except (JWTError, ValueError) as e:
        logger.warning(f"JWT Error during token decoding: {e}")
        raise credentials_exception

    member = db.query(Member).filter(Member.id == member_id).first()
    if member is None:
        logger.warning(f"Member with ID {member_id} from token not found in DB.")
        raise credentials_exception
    request.state.user = member
    logger.debug(f"Authenticated member ID: {member.id}")
    return member


def get_admin_member(current_member: Member = Depends(get_current_member)) -> Member:
    """
    Зависимость для защиты админских эндпоинтов.
    """
    if not current_member.is_admin:
        logger.warning(f"Permission denied for member {current_member.id} (role={current_member.role}).")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to access this resource."
        )
    return current_member


async def _gateway_for(provider: str) -> AsyncIterator[PaymentGateway]:
    gateway = build_payment_gateway(provider)
    try:
        yield gateway
    finally:
        await gateway.aclose()

# Веб-хук приходит от конкретного провайдера независимо от PAYMENT_PROVIDER
async def get_paystack_gateway() -> AsyncIterator[PaymentGateway]:
    async for gateway in _gateway_for("paystack"):
        yield gateway

async def get_flutterwave_gateway() -> AsyncIterator[PaymentGateway]:
    async for gateway in _gateway_for("flutterwave"):
        yield gateway
