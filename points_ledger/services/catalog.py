# points_ledger/services/catalog.py

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import List

from points_ledger.core.config import settings
from points_ledger.core.exceptions import InvalidPackage
from points_ledger.models.purchase import MODE_CUSTOM, MODE_PRESET, PointPurchase

logger = logging.getLogger(__name__)

# Допуск на округление при расчете суммы для произвольного пакета (в наирах).
# В покупку записывается сумма клиента, а не пересчитанная: ее он и оплачивает.
CUSTOM_AMOUNT_TOLERANCE = Decimal("1")


@dataclass(frozen=True)
class PointPackage:
    points: int
    local_amount: Decimal
    exchange_rate: Decimal


class PackageCatalog:
    """
    Каталог пакетов баллов: фиксированные пресеты и произвольный пакет
    в границах [min_points, max_points] по единому курсу.
    """

    def __init__(self, presets: List[PointPackage], custom_rate: Decimal, min_points: int, max_points: int):
        self.presets = presets
        self.custom_rate = Decimal(custom_rate)
        self.min_points = min_points
        self.max_points = max_points

    def expected_local_amount(self, points: int) -> Decimal:
        return (Decimal(points) / self.custom_rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP)

    def validate_preset(self, points: int, local_amount: Decimal) -> PointPackage:
        local_amount = Decimal(local_amount)
        for package in self.presets:
            if package.points == points and package.local_amount == local_amount:
                return package
        raise InvalidPackage(
            "Invalid package. Choose one of the available packages.",
            packages=[self._package_dict(p) for p in self.presets],
        )

    def validate_custom(self, points: int, local_amount: Decimal) -> PointPackage:
        if points < self.min_points or points > self.max_points:
            raise InvalidPackage(
                f"Custom purchase must be between {self.min_points:,} and {self.max_points:,} points"
            )
        expected = self.expected_local_amount(points)
        if abs(Decimal(local_amount) - expected) > CUSTOM_AMOUNT_TOLERANCE:
            raise InvalidPackage(
                f"Invalid amount for {points} points. Expected: {expected}",
                expected_local_amount=str(expected),
            )
        return PointPackage(points=points, local_amount=Decimal(local_amount), exchange_rate=self.custom_rate)

    def validate(self, mode: str, points: int, local_amount: Decimal) -> PointPackage:
        if mode == MODE_PRESET:
            return self.validate_preset(points, local_amount)
        if mode == MODE_CUSTOM:
            return self.validate_custom(points, local_amount)
        raise InvalidPackage(f"Unknown purchase mode: {mode}")

    def revalidate(self, purchase: PointPurchase) -> bool:
        """
        Повторная проверка тройки (баллы, сумма, курс) сохраненной покупки
        по текущему каталогу. Записанный курс должен совпадать с действующим.
        """
        try:
            package = self.validate(purchase.mode, purchase.points_amount, purchase.local_amount)
            if package.exchange_rate != Decimal(purchase.exchange_rate):
                logger.warning(f"Exchange rate of purchase {purchase.id} ({purchase.external_reference}) "
                               f"is {purchase.exchange_rate}, catalog rate is {package.exchange_rate}")
                return False
        except InvalidPackage:
            logger.warning(f"Package re-validation failed for purchase {purchase.id} ({purchase.external_reference})")
            return False
        return True

    @staticmethod
    def _package_dict(package: PointPackage) -> dict:
        return {
            "points": package.points,
            "local_amount": str(package.local_amount),
            "exchange_rate": str(package.exchange_rate),
        }

    def describe(self) -> dict:
        return {
            "packages": [self._package_dict(p) for p in self.presets],
            "custom_rate": {
                "exchange_rate": str(self.custom_rate),
                "min_points": self.min_points,
                "max_points": self.max_points,
            },
            "currency": settings.CURRENCY,
        }


def get_package_catalog() -> PackageCatalog:
    """Собирает каталог из настроек. Используется как зависимость FastAPI."""
    presets = [
        PointPackage(
            points=int(p["points"]),
            local_amount=Decimal(str(p["local_amount"])),
            exchange_rate=Decimal(str(p["exchange_rate"])),
        )
        for p in settings.POINT_PACKAGES
    ]
    return PackageCatalog(
        presets=presets,
        custom_rate=settings.CUSTOM_POINTS_EXCHANGE_RATE,
        min_points=settings.MIN_CUSTOM_POINTS,
        max_points=settings.MAX_CUSTOM_POINTS,
    )
