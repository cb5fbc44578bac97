"""Shared response envelope."""

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

DataT = TypeVar("DataT")


class ApiResponse(BaseModel, Generic[DataT]):
    """Envelope returned by every scheduling endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    data: DataT | None = None
    message: str | None = None
    count: int | None = None
    total: int | None = None
    total_pages: int | None = Field(default=None, alias="totalPages")
    current_page: int | None = Field(default=None, alias="currentPage")
    warnings: list[str] | None = None
