# points_ledger/schemas/common.py
from typing import Generic, List, TypeVar
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

DataType = TypeVar("DataType")


class CamelModel(BaseModel):
    """Базовая схема API: snake_case в Python, camelCase в JSON."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class PaginatedResponse(CamelModel, Generic[DataType]):
    """
    Универсальная схема для пагинированных ответов.
    """
    total_items: int
    total_pages: int
    current_page: int
    size: int
    items: List[DataType]


class ApiResponse(BaseModel, Generic[DataType]):
    """Обертка всех ответов: {"success": true, "data": ...}."""
    success: bool = True
    data: DataType


class ApiError(BaseModel):
    code: str
    message: str
    details: dict | None = None


class ApiErrorResponse(BaseModel):
    success: bool = False
    error: ApiError
