from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class LogEntryResponse(BaseModel):
    id: str
    timestamp: datetime
    level: str
    source: str
    message: str
    details: dict[str, Any] | None = None


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class LogStatsResponse(BaseModel):
    total: int
    counts_by_level: dict[str, int]


class BufferInfoResponse(BaseModel):
    current_size: int
    max_size: int


class SystemLogsResponse(BaseModel):
    entries: list[LogEntryResponse]
    pagination: PaginationResponse
    stats: LogStatsResponse
    buffer: BufferInfoResponse


class ManualLogCreate(BaseModel):
    level: Literal["info", "warning", "error", "debug"] = "info"
    source: str = Field(default="manual", min_length=1, max_length=100)
    message: str = Field(..., min_length=1, max_length=2000)
    details: dict[str, Any] | None = None
