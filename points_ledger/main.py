# points_ledger/main.py

import logging
from contextlib import asynccontextmanager
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

# Конфигурация и ядро
from points_ledger.core.config import settings as config
from points_ledger.core.exceptions import PointsError
from points_ledger.core.limiter import limiter
from points_ledger.core.logging_config import setup_logging
from points_ledger.core.redis import redis_client
from points_ledger.schemas.common import ApiError, ApiErrorResponse

# Роутеры FastAPI
from points_ledger.routers import admin as admin_router, points, webhooks

# Фоновые задачи
from points_ledger.services.reconciliation import reconcile_pending_purchases_task

# --- Инициализация ---
logger = logging.getLogger(__name__)
scheduler = AsyncIOScheduler()

STARTUP_LOCK_KEY = "points_ledger_startup_lock"

HTTP_ERROR_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    429: "rate_limited",
}


def error_response(status_code: int, code: str, message: str, details: dict | None = None) -> JSONResponse:
    """Единый формат ошибки: {"success": false, "error": {...}}."""
    body = ApiErrorResponse(error=ApiError(code=code, message=message, details=details or None))
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


# --- Обработчики исключений ---
async def points_error_handler(request: Request, exc: PointsError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return error_response(exc.status_code, exc.code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    response = error_response(exc.status_code, HTTP_ERROR_CODES.get(exc.status_code, "http_error"), str(exc.detail))
    if getattr(exc, "headers", None):
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return error_response(400, "validation_error", "Invalid request", {"errors": jsonable_encoder(exc.errors())})


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit exceeded on {request.url.path}: {exc.detail}")
    return error_response(429, "rate_limited", f"Rate limit exceeded: {exc.detail}")


async def unhandled_exception_handler(request: Request, exc: Exception):
    """
    Глобальный обработчик для всех необработанных исключений.
    Подробности остаются в логах, клиенту уходит общий ответ.
    """
    logger.critical(f"Unhandled exception for request: {request.method} {request.url}", exc_info=exc)
    return error_response(500, "internal_error", "Internal Server Error")


# --- Lifespan Manager (запуск и остановка приложения) ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Application lifespan startup...")

    # Блокировка через Redis: планировщик запускает только один воркер
    is_main_worker = await redis_client.set(STARTUP_LOCK_KEY, "1", ex=60, nx=True)

    if is_main_worker:
        logger.info("This is the main worker. Starting scheduler...")
        if not scheduler.running:
            scheduler.add_job(reconcile_pending_purchases_task, 'interval', minutes=15, id="reconcile_pending_purchases")
            scheduler.start()
            logger.info("Scheduler started with background jobs.")
    else:
        logger.info("This is a secondary worker. Skipping scheduler setup.")

    yield

    # Код при остановке
    if is_main_worker:
        logger.info("Main worker shutting down...")
        if scheduler.running:
            scheduler.shutdown()
            logger.info("Scheduler shut down.")
        await redis_client.delete(STARTUP_LOCK_KEY)
    else:
        logger.info("Secondary worker shutting down.")


# --- Создание FastAPI приложения ---
app = FastAPI(
    title="Points Ledger Service",
    description="Point purchases, payment settlement and member-to-member transfers",
    version="0.1.0",
    lifespan=lifespan
)

app.state.limiter = limiter

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Регистрация обработчиков исключений ---
app.add_exception_handler(PointsError, points_error_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# --- Подключение роутеров FastAPI ---
api_router = APIRouter(prefix="/api/v1")

api_router.include_router(points.router, prefix="/points", tags=["Points"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["Payment Webhooks"])
api_router.include_router(admin_router.router, prefix="/admin", tags=["Admin"])

app.include_router(api_router)


@app.get("/health", tags=["Health"])
def health_check():
    return {"success": True, "data": {"status": "ok"}}
