from fastapi import APIRouter, Depends, Query, status

from ..bootstrap import AccessServices
from ..dependencies import get_services, require_top_role
from ..errors import ValidationError
from ..logbuffer import LogLevel
from ..models.user import User
from ..schemas.system_log import (
    BufferInfoResponse,
    LogEntryResponse,
    LogStatsResponse,
    ManualLogCreate,
    PaginationResponse,
    SystemLogsResponse,
)

router = APIRouter(prefix="/admin/logs", tags=["admin-logs"])

MAX_PAGE_LIMIT = 200


def _entry_response(entry) -> LogEntryResponse:
    return LogEntryResponse(**entry.to_dict())


@router.get("/system", response_model=SystemLogsResponse)
async def list_system_logs(
    level: str | None = Query(default=None),
    source: str | None = Query(default=None, max_length=100),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=MAX_PAGE_LIMIT),
    _viewer: User = Depends(require_top_role()),
    services: AccessServices = Depends(get_services),
) -> SystemLogsResponse:
    if level is not None and level not in {item.value for item in LogLevel}:
        raise ValidationError("Unknown log level", details={"level": level})

    buffer = services.log_buffer
    result = buffer.get_filtered(level=level, source=source or None, page=page, limit=limit)
    stats = buffer.get_stats()
    return SystemLogsResponse(
        entries=[_entry_response(entry) for entry in result.entries],
        pagination=PaginationResponse(
            page=result.page,
            limit=result.limit,
            total=result.total,
            total_pages=result.total_pages,
        ),
        stats=LogStatsResponse(total=stats.total, counts_by_level=stats.counts_by_level),
        buffer=BufferInfoResponse(current_size=len(buffer), max_size=buffer.capacity),
    )


@router.post(
    "/system", response_model=LogEntryResponse, status_code=status.HTTP_201_CREATED
)
async def append_system_log(
    payload: ManualLogCreate,
    actor: User = Depends(require_top_role()),
    services: AccessServices = Depends(get_services),
) -> LogEntryResponse:
    details = {**(payload.details or {}), "added_by": str(actor.id)}
    entry = services.log_buffer.append(payload.level, payload.source, payload.message, details)
    return _entry_response(entry)


@router.delete("/system", response_model=LogEntryResponse)
async def clear_system_logs(
    actor: User = Depends(require_top_role()),
    services: AccessServices = Depends(get_services),
) -> LogEntryResponse:
    return _entry_response(services.log_buffer.clear(actor.email))
