"""Loop logging and audit trail.

The logger records structured entries for scheduler events: which
process was added, forked, killed or finished, and which syscalls
failed along the way.  It is an in-memory buffer, not a stream of
text lines, so tests and tools can query it after a run.

- **LogLevel** - severity levels ordered for filtering (DEBUG < ERROR).
- **LogEntry** - a single structured record (level, message, source, pid).
- **Logger** - a bounded append-only log with filtering and clearing.

A loop that runs for a long time adds and completes many processes, so
the buffer keeps only the most recent ``max_entries`` records.
"""

from collections import deque
from dataclasses import dataclass
from enum import IntEnum

DEFAULT_MAX_LOG_ENTRIES = 1000


class LogLevel(IntEnum):
    """Severity levels for log entries.

    Using IntEnum means levels compare with ``<`` / ``>`` naturally,
    which makes minimum-level filtering trivial.
    """

    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3


@dataclass(frozen=True)
class LogEntry:
    """A single structured log record.

    Attributes:
        level: The severity of this event.
        message: A human-readable description of what happened.
        source: The subsystem that generated the event (e.g. "loop").
        pid: The process id the event concerns, if any.

    """

    level: LogLevel
    message: str
    source: str
    pid: str | None = None

    def __str__(self) -> str:
        """Format as ``[LEVEL] source(pid): message``."""
        origin = self.source if self.pid is None else f"{self.source}({self.pid})"
        return f"[{self.level.name}] {origin}: {self.message}"


class Logger:
    """Bounded append-only log buffer with filtering."""

    def __init__(
        self,
        *,
        max_entries: int | None = DEFAULT_MAX_LOG_ENTRIES,
        min_level: LogLevel = LogLevel.DEBUG,
    ) -> None:
        """Create an empty logger.

        Args:
            max_entries: Maximum number of entries kept; the oldest are
                evicted first.  ``None`` keeps everything.
            min_level: Entries below this level are discarded on arrival.

        """
        if max_entries is not None and max_entries <= 0:
            msg = f"max_entries must be positive, got {max_entries}"
            raise ValueError(msg)
        self._entries: deque[LogEntry] = deque(maxlen=max_entries)
        self._min_level = min_level

    @property
    def entries(self) -> list[LogEntry]:
        """Return all retained entries in chronological order."""
        return list(self._entries)

    @property
    def min_level(self) -> LogLevel:
        """Return the level below which entries are discarded."""
        return self._min_level

    def log(
        self,
        level: LogLevel,
        message: str,
        *,
        source: str,
        pid: str | None = None,
    ) -> None:
        """Append a new entry to the log.

        Args:
            level: Severity of the event.
            message: Human-readable event description.
            source: Subsystem that generated the event.
            pid: Process id associated with the event.

        """
        if level < self._min_level:
            return
        self._entries.append(LogEntry(level=level, message=message, source=source, pid=pid))

    def filter(
        self,
        *,
        min_level: LogLevel | None = None,
        source: str | None = None,
        pid: str | None = None,
    ) -> list[LogEntry]:
        """Return entries matching the given criteria.

        Args:
            min_level: If set, only return entries at or above this level.
            source: If set, only return entries from this source.
            pid: If set, only return entries about this process.

        Returns:
            A filtered list of log entries.

        """
        result = list(self._entries)
        if min_level is not None:
            result = [e for e in result if e.level >= min_level]
        if source is not None:
            result = [e for e in result if e.source == source]
        if pid is not None:
            result = [e for e in result if e.pid == pid]
        return result

    def lines(self) -> list[str]:
        """Return the log rendered one entry per line."""
        return [str(e) for e in self._entries]

    def clear(self) -> None:
        """Remove all log entries."""
        self._entries.clear()

    def __len__(self) -> int:
        """Return the number of retained entries."""
        return len(self._entries)
