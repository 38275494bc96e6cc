# tests/conftest.py
import asyncio
import os
from decimal import Decimal

# Настройки должны быть заданы до импорта пакета: settings читаются при импорте
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite://")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_STORAGE_URI", "memory://")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_paystack")
os.environ.setdefault("FLUTTERWAVE_SECRET_KEY", "FLWSECK_TEST")
os.environ.setdefault("FLUTTERWAVE_WEBHOOK_HASH", "flw-webhook-hash")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from points_ledger.clients.payment_gateway import (
    OUTCOME_SUCCEEDED, GatewayPool, InitializeResult, PaymentGateway, VerifyResult,
)
from points_ledger.core.exceptions import GatewayUnavailable
from points_ledger.crud import member as crud_member
from points_ledger.crud import purchase as crud_purchase
from points_ledger.db.session import Base
from points_ledger.models.member import ROLE_ADMIN
from points_ledger.models.purchase import MODE_PRESET
from points_ledger.services import ledger as ledger_service
from points_ledger.services.auth import create_access_token
from points_ledger.services.catalog import PackageCatalog, PointPackage
import points_ledger.models  # noqa: F401  Регистрируем все модели для create_all


class FakeGateway(PaymentGateway):
    """
    Шлюз для тестов: без сети, с настраиваемым исходом.
    verify уступает управление циклу событий, чтобы параллельные
    проверки действительно перемешивались.
    """
    name = "fake"

    def __init__(self):
        self.outcome = OUTCOME_SUCCEEDED
        self.currency = "NGN"
        self.amount = None
        self.amounts = {}
        self.initialize_calls = []
        self.verify_calls = []
        self.unavailable_initializations = 0
        self.initialize_error = None
        self.verify_error = None

    async def initialize(self, amount_major, currency, reference, customer_email, redirect_url, metadata):
        self.initialize_calls.append({
            "amount_major": amount_major,
            "currency": currency,
            "reference": reference,
            "customer_email": customer_email,
            "redirect_url": redirect_url,
            "metadata": metadata,
        })
        if self.unavailable_initializations > 0:
            self.unavailable_initializations -= 1
            raise GatewayUnavailable("fake is unreachable")
        if self.initialize_error is not None:
            raise self.initialize_error
        self.amounts[reference] = Decimal(amount_major)
        return InitializeResult(
            checkout_url=f"https://checkout.test/{reference}",
            provider_handle=f"handle_{reference}",
        )

    async def verify(self, reference):
        self.verify_calls.append(reference)
        await asyncio.sleep(0)
        if self.verify_error is not None:
            raise self.verify_error
        amount = self.amount if self.amount is not None else self.amounts.get(reference, Decimal("0"))
        return VerifyResult(
            outcome=self.outcome,
            amount_major=Decimal(amount),
            currency=self.currency,
            channel="card",
            paid_at="2026-10-18T12:00:00Z",
            provider_transaction_id="fake_tx_1",
            raw_status=self.outcome,
        )

    def verify_webhook_signature(self, raw_body, headers):
        return headers.get("x-fake-signature") == "valid"

    def parse_webhook_reference(self, payload):
        if payload.get("event") != "charge.success":
            return None
        return payload.get("reference")

    async def aclose(self):
        pass


# --- База данных ---

@pytest.fixture(scope="function")
def engine(tmp_path):
    """
    Файловая SQLite на каждый тест: несколько сессий (параллельные проверки,
    запросы API) видят одни и те же данные.
    """
    engine = create_engine(f"sqlite:///{tmp_path / 'ledger.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    """
    Фикстура для создания чистой базы данных для каждого теста.
    """
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


# --- Доменные данные ---

TEST_PACKAGES = [
    PointPackage(points=1000, local_amount=Decimal("900"), exchange_rate=Decimal("1.11")),
    PointPackage(points=200000, local_amount=Decimal("150000"), exchange_rate=Decimal("1.33")),
    PointPackage(points=500000, local_amount=Decimal("350000"), exchange_rate=Decimal("1.43")),
    PointPackage(points=1000000, local_amount=Decimal("650000"), exchange_rate=Decimal("1.54")),
]


@pytest.fixture
def catalog() -> PackageCatalog:
    return PackageCatalog(
        presets=list(TEST_PACKAGES),
        custom_rate=Decimal("1.33"),
        min_points=10_000,
        max_points=2_000_000,
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def other_gateway() -> FakeGateway:
    """Второй провайдер с тем же поведением, но другим именем."""
    other = FakeGateway()
    other.name = "other"
    return other


@pytest.fixture
def gateways(gateway) -> GatewayPool:
    """Пул с фейковым шлюзом; остальные провайдеры строятся обычной фабрикой."""
    return GatewayPool([gateway])


@pytest.fixture
def member(db_session):
    member = crud_member.create_member(db_session, email="alice@example.com", full_name="Alice")
    db_session.commit()
    return member


@pytest.fixture
def other_member(db_session):
    member = crud_member.create_member(db_session, email="bob@example.com", full_name="Bob")
    db_session.commit()
    return member


@pytest.fixture
def admin_member(db_session):
    member = crud_member.create_member(db_session, email="admin@example.com", role=ROLE_ADMIN)
    db_session.commit()
    return member


@pytest.fixture
def make_pending_purchase(db_session, gateway):
    """Создает покупку в 'pending' напрямую в БД и регистрирует сумму в фейковом шлюзе."""
    counter = {"n": 0}

    def _make(member, points=1000, local_amount=Decimal("900"), exchange_rate=Decimal("1.11"), mode=MODE_PRESET,
              provider=None):
        counter["n"] += 1
        reference = f"pt_1760000000000_{counter['n']:016x}"
        purchase = crud_purchase.create_purchase(
            db_session,
            member_id=member.id,
            points_amount=points,
            local_amount=local_amount,
            exchange_rate=exchange_rate,
            mode=mode,
            external_reference=reference,
            provider=provider or gateway.name,
        )
        db_session.commit()
        gateway.amounts[reference] = Decimal(local_amount)
        return purchase

    return _make


@pytest.fixture
def fund(db_session):
    """Начисляет участнику стартовый баланс через обычную запись журнала."""
    def _fund(member, points):
        return ledger_service.award(db_session, member.id, points, source="test")
    return _fund


# --- API ---

def auth_headers_for(member) -> dict:
    token = create_access_token({"sub": str(member.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(member) -> dict:
    return auth_headers_for(member)


@pytest.fixture
def admin_auth_headers(admin_member) -> dict:
    return auth_headers_for(admin_member)


@pytest.fixture
async def client(session_factory, gateway, gateways, catalog):
    from points_ledger import dependencies
    from points_ledger.main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[dependencies.get_db] = override_get_db
    app.dependency_overrides[dependencies.get_payment_gateway] = lambda: gateway
    app.dependency_overrides[dependencies.get_gateway_pool] = lambda: gateways
    app.dependency_overrides[dependencies.get_paystack_gateway] = lambda: gateway
    app.dependency_overrides[dependencies.get_flutterwave_gateway] = lambda: gateway
    app.dependency_overrides[dependencies.get_catalog] = lambda: catalog

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_auth_headers():
    return auth_headers_for
