# tests/test_catalog.py

from decimal import Decimal
from types import SimpleNamespace

import pytest

from points_ledger.core.exceptions import InvalidPackage
from points_ledger.services.catalog import get_package_catalog


def test_preset_must_match_points_and_amount(catalog):
    package = catalog.validate("preset", 200000, Decimal("150000"))
    assert package.exchange_rate == Decimal("1.33")

    with pytest.raises(InvalidPackage) as exc_info:
        catalog.validate("preset", 200000, Decimal("140000"))
    # В деталях ошибки клиенту возвращается список доступных пакетов
    assert len(exc_info.value.details["packages"]) == len(catalog.presets)


def test_custom_amount_is_points_divided_by_rate(catalog):
    # 50 000 / 1.33 = 37 593.98 -> 37 594
    assert catalog.expected_local_amount(50000) == Decimal("37594")

    package = catalog.validate("custom", 50000, Decimal("37594"))
    assert package.exchange_rate == Decimal("1.33")
    # Допуск на округление - одна наира
    catalog.validate("custom", 50000, Decimal("37593"))
    # В пакет попадает сумма клиента, а не пересчитанная
    assert catalog.validate("custom", 50000, Decimal("37595")).local_amount == Decimal("37595")

    with pytest.raises(InvalidPackage) as exc_info:
        catalog.validate("custom", 50000, Decimal("37500"))
    assert exc_info.value.details["expected_local_amount"] == "37594"


@pytest.mark.parametrize("points", [9999, 2_000_001])
def test_custom_points_out_of_bounds(catalog, points):
    with pytest.raises(InvalidPackage):
        catalog.validate("custom", points, catalog.expected_local_amount(points))


def test_custom_bounds_are_inclusive(catalog):
    catalog.validate("custom", 10_000, catalog.expected_local_amount(10_000))
    catalog.validate("custom", 2_000_000, catalog.expected_local_amount(2_000_000))


def test_unknown_mode_is_rejected(catalog):
    with pytest.raises(InvalidPackage):
        catalog.validate("bulk", 1000, Decimal("900"))


def test_revalidate_custom_against_catalog_rate(catalog):
    purchase = SimpleNamespace(
        id=1, external_reference="pt_1", mode="custom",
        points_amount=50000, local_amount=Decimal("37594.00"), exchange_rate=Decimal("1.33"),
    )
    assert catalog.revalidate(purchase) is True

    purchase.local_amount = Decimal("30000.00")
    assert catalog.revalidate(purchase) is False


def test_revalidate_custom_ignores_rate_written_on_the_row(catalog):
    # 20 000 / 2.00 = 10 000 - тройка согласована сама с собой, но курс каталога 1.33
    purchase = SimpleNamespace(
        id=3, external_reference="pt_3", mode="custom",
        points_amount=20000, local_amount=Decimal("10000.00"), exchange_rate=Decimal("2.00"),
    )
    assert catalog.revalidate(purchase) is False

    # Сумма по курсу каталога, но на строке другой курс
    purchase.local_amount = catalog.expected_local_amount(20000)
    assert catalog.revalidate(purchase) is False

    purchase.exchange_rate = Decimal("1.3300")
    assert catalog.revalidate(purchase) is True


def test_revalidate_preset_checks_rate(catalog):
    purchase = SimpleNamespace(
        id=2, external_reference="pt_2", mode="preset",
        points_amount=1000, local_amount=Decimal("900.00"), exchange_rate=Decimal("1.11"),
    )
    assert catalog.revalidate(purchase) is True

    purchase.exchange_rate = Decimal("2.00")
    assert catalog.revalidate(purchase) is False


def test_default_catalog_from_settings():
    catalog = get_package_catalog()
    points = [p.points for p in catalog.presets]
    assert points == [200000, 500000, 1000000]
    assert catalog.presets[0].local_amount == Decimal("150000")
    assert catalog.custom_rate == Decimal("1.33")

    described = catalog.describe()
    assert described["currency"] == "NGN"
    assert described["custom_rate"]["min_points"] == 10_000
