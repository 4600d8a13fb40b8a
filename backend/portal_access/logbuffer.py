"""
In-memory operational log buffer.

Fixed-capacity ring of recent system events for the operator console.
Entries live only in process memory: once the buffer is full, every append
evicts the oldest entry and evicted entries cannot be recovered. This is
operational visibility, not a durable audit trail.

Every entry is also forwarded to the ``portal.logbuffer`` logger so that
regular log shipping still sees it.
"""
from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping

DEFAULT_CAPACITY = 500
DEFAULT_PAGE_LIMIT = 50

logger = logging.getLogger("portal.logbuffer")


class LogLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    DEBUG = "debug"


_STDLIB_LEVELS: dict[LogLevel, int] = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.DEBUG: logging.DEBUG,
}


@dataclass(frozen=True)
class LogEntry:
    id: str
    timestamp: datetime
    level: LogLevel
    source: str
    message: str
    details: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "source": self.source,
            "message": self.message,
            "details": dict(self.details) if self.details is not None else None,
        }


@dataclass(frozen=True)
class LogPage:
    entries: list[LogEntry]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0


@dataclass(frozen=True)
class LogStats:
    total: int
    counts_by_level: dict[str, int] = field(default_factory=dict)


class SystemLogBuffer:
    """Thread-safe ring buffer of ``LogEntry`` objects.

    ``append`` is O(1): ``deque(maxlen=capacity)`` drops the oldest entry
    on overflow. The buffer never awaits; a single lock guards the deque
    and the id sequence.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not isinstance(capacity, int) or capacity <= 0:
            raise ValueError("log buffer capacity must be a positive integer")
        self._capacity = capacity
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._sequence = 0
        self._clock = clock

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def append(
        self,
        level: LogLevel | str,
        source: str,
        message: str,
        details: Mapping[str, Any] | None = None,
    ) -> LogEntry:
        level = LogLevel(level)
        if not source:
            raise ValueError("log entry source is required")
        if not message:
            raise ValueError("log entry message is required")

        now = self._clock()
        with self._lock:
            self._sequence += 1
            entry = LogEntry(
                id=f"SYS_{int(now * 1000)}_{self._sequence}",
                timestamp=datetime.fromtimestamp(now, tz=timezone.utc),
                level=level,
                source=source,
                message=message,
                details=dict(details) if details is not None else None,
            )
            self._entries.append(entry)

        logger.log(_STDLIB_LEVELS[level], "[%s] %s", source, message)
        return entry

    def info(self, source: str, message: str, details: Mapping[str, Any] | None = None) -> LogEntry:
        return self.append(LogLevel.INFO, source, message, details)

    def warning(self, source: str, message: str, details: Mapping[str, Any] | None = None) -> LogEntry:
        return self.append(LogLevel.WARNING, source, message, details)

    def error(self, source: str, message: str, details: Mapping[str, Any] | None = None) -> LogEntry:
        return self.append(LogLevel.ERROR, source, message, details)

    def debug(self, source: str, message: str, details: Mapping[str, Any] | None = None) -> LogEntry:
        return self.append(LogLevel.DEBUG, source, message, details)

    def get_filtered(
        self,
        *,
        level: LogLevel | str | None = None,
        source: str | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> LogPage:
        """Return one page of matching entries, newest first.

        Filtering is a linear scan of the live buffer; ``level`` and
        ``source`` match by equality.
        """
        if page < 1:
            raise ValueError("page must be greater than or equal to 1")
        if limit < 1:
            raise ValueError("limit must be greater than or equal to 1")
        wanted_level = LogLevel(level) if level is not None else None

        with self._lock:
            snapshot = list(self._entries)

        matches = [
            entry
            for entry in reversed(snapshot)
            if (wanted_level is None or entry.level == wanted_level)
            and (source is None or entry.source == source)
        ]
        start = (page - 1) * limit
        return LogPage(
            entries=matches[start:start + limit],
            total=len(matches),
            page=page,
            limit=limit,
        )

    def get_stats(self) -> LogStats:
        counts = {level.value: 0 for level in LogLevel}
        with self._lock:
            for entry in self._entries:
                counts[entry.level.value] += 1
            total = len(self._entries)
        return LogStats(total=total, counts_by_level=counts)

    def clear(self, actor: str) -> LogEntry:
        """Drop every entry, then record who cleared the buffer."""
        with self._lock:
            dropped = len(self._entries)
            self._entries.clear()
        return self.info(
            "system",
            f"Log buffer cleared by {actor}",
            {"cleared_by": actor, "dropped_entries": dropped},
        )
