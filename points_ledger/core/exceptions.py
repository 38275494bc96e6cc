# points_ledger/core/exceptions.py

"""
Иерархия доменных ошибок сервиса баллов.

Каждая ошибка знает свой HTTP-статус и машинный код, поэтому сервисы
не зависят от FastAPI, а обработчик в main.py превращает их в ответ
вида {"success": false, "error": {...}}.
"""


class PointsError(Exception):
    status_code: int = 400
    code: str = "points_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


# --- 400 ---
class ValidationError(PointsError):
    status_code = 400
    code = "validation_error"


class InvalidPackage(ValidationError):
    code = "invalid_package"


class SelfTransfer(ValidationError):
    code = "self_transfer"


class InsufficientFunds(ValidationError):
    code = "insufficient_funds"


class PurchaseFailed(ValidationError):
    """Покупка уже в терминальном статусе 'failed' - повторная проверка невозможна."""
    code = "purchase_failed"


class IntegrityViolation(PointsError):
    """Сумма или пакет не сошлись с ответом шлюза. Покупка помечается 'failed' навсегда."""
    status_code = 400
    code = "integrity_violation"


# --- 403 / 404 ---
class Forbidden(PointsError):
    status_code = 403
    code = "forbidden"


class NotFound(PointsError):
    status_code = 404
    code = "not_found"


class MemberNotFound(NotFound):
    code = "member_not_found"


class PurchaseNotFound(NotFound):
    code = "purchase_not_found"


class TransferNotFound(NotFound):
    code = "transfer_not_found"


# --- 502 ---
class GatewayError(PointsError):
    status_code = 502
    code = "gateway_error"


class GatewayUnavailable(GatewayError):
    code = "gateway_unavailable"
