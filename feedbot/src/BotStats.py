"""Event log, status notifier and counters exposed to presentation layers.

``EventLog`` keeps the last entries in a ring buffer and fans each new
entry out to subscriber queues. Every entry is mirrored into Python
logging so the terminal shows the same stream.

.. code-block:: python

    >>> queue = event_log.subscribe()
    >>> entry = await queue.get()
    >>> entry.message
    'Updating WETH_USDC'
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 500
DEFAULT_QUEUE_SIZE = 1000


class BotStatus(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @property
    def levelno(self) -> int:
        return {
            LogLevel.DEBUG: logging.DEBUG,
            LogLevel.INFO: logging.INFO,
            LogLevel.WARN: logging.WARNING,
            LogLevel.ERROR: logging.ERROR,
        }[self]


def isoformat(timestamp: float | None) -> str | None:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class LogEntry:
    """One structured log line.

    :ivar timestamp: Unix time of the entry.
    :ivar level: Severity.
    :ivar message: Human readable message.
    :ivar data: Optional fields such as feed alias, step or transaction hash.
    """

    timestamp: float
    level: LogLevel
    message: str
    data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "timestamp": isoformat(self.timestamp),
            "level": self.level.value,
            "message": self.message,
        }
        if self.data:
            entry["data"] = self.data
        return entry


class _Fanout:
    """Single producer, many subscriber queues."""

    def __init__(self) -> None:
        self._subscribers: set[asyncio.Queue] = set()

    def subscribe(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, item: Any) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(item)
            except asyncio.QueueFull:
                # Slow consumer: drop its oldest item to make room.
                queue.get_nowait()
                queue.put_nowait(item)


class EventLog(_Fanout):
    """Ring buffer of recent log entries with subscriber queues.

    :ivar max_entries: Entries kept in memory.
    """

    def __init__(self, max_entries: int = MAX_LOG_ENTRIES, clock=None) -> None:
        super().__init__()
        self.max_entries = max_entries
        self.clock = clock
        self._entries: deque[LogEntry] = deque(maxlen=max_entries)

    def _now(self) -> float:
        return self.clock.time() if self.clock is not None else datetime.now(timezone.utc).timestamp()

    def log(self, level: LogLevel, message: str, **data: Any) -> LogEntry:
        """Append an entry, mirror it to Python logging and publish it."""
        entry = LogEntry(self._now(), level, message, data or None)
        self._entries.append(entry)

        suffix = " ".join(f"{k}={v}" for k, v in data.items() if v is not None)
        logger.log(level.levelno, f"{message} [{suffix}]" if suffix else message)

        self.publish(entry)
        return entry

    def debug(self, message: str, **data: Any) -> LogEntry:
        return self.log(LogLevel.DEBUG, message, **data)

    def info(self, message: str, **data: Any) -> LogEntry:
        return self.log(LogLevel.INFO, message, **data)

    def warn(self, message: str, **data: Any) -> LogEntry:
        return self.log(LogLevel.WARN, message, **data)

    def error(self, message: str, **data: Any) -> LogEntry:
        return self.log(LogLevel.ERROR, message, **data)

    def entries(self, limit: int | None = None) -> list[LogEntry]:
        """Most recent entries, oldest first."""
        items = list(self._entries)
        return items[-limit:] if limit else items

    def clear(self) -> None:
        self._entries.clear()


class StatusNotifier(_Fanout):
    """Publishes scheduler status transitions."""

    def __init__(self, status: BotStatus = BotStatus.STOPPED) -> None:
        super().__init__()
        self.status = status

    def set(self, status: BotStatus) -> None:
        if status is self.status:
            return
        logger.debug(f"Status {self.status.value} -> {status.value}")
        self.status = status
        self.publish(status)


@dataclass
class FeedStats:
    updates: int = 0
    failures: int = 0
    skips: int = 0
    last_price: str | None = None
    last_update: float | None = None


@dataclass
class BotStats:
    """Aggregate and per-feed counters for one run of the scheduler.

    :ivar consecutive_failures: Failed flows since the last success.
    """

    start_time: float | None = None
    total_updates: int = 0
    successful_updates: int = 0
    failed_updates: int = 0
    skipped_updates: int = 0
    consecutive_failures: int = 0
    last_update_time: float | None = None
    last_check_time: float | None = None
    last_check_note: str | None = None
    feed_stats: dict[str, FeedStats] = field(default_factory=dict)

    def _feed(self, feed_id: str) -> FeedStats:
        return self.feed_stats.setdefault(feed_id, FeedStats())

    def record_check(self, now: float, note: str | None = None) -> None:
        self.last_check_time = now
        if note is not None:
            self.last_check_note = note

    def record_success(self, feed_id: str, now: float, price: str | None = None) -> None:
        self.total_updates += 1
        self.successful_updates += 1
        self.consecutive_failures = 0
        self.last_update_time = now
        stats = self._feed(feed_id)
        stats.updates += 1
        stats.last_update = now
        if price is not None:
            stats.last_price = price

    def record_failure(self, feed_id: str) -> None:
        self.total_updates += 1
        self.failed_updates += 1
        self.consecutive_failures += 1
        self._feed(feed_id).failures += 1

    def record_skip(self, feed_id: str) -> None:
        self.skipped_updates += 1
        self._feed(feed_id).skips += 1

    def uptime(self, now: float) -> float:
        return now - self.start_time if self.start_time is not None else 0.0

    def snapshot(self, now: float) -> dict[str, Any]:
        """Plain-dict view of the counters for presentation layers."""
        return {
            "start_time": isoformat(self.start_time),
            "uptime_seconds": int(self.uptime(now)),
            "total_updates": self.total_updates,
            "successful_updates": self.successful_updates,
            "failed_updates": self.failed_updates,
            "skipped_updates": self.skipped_updates,
            "consecutive_failures": self.consecutive_failures,
            "last_update_time": isoformat(self.last_update_time),
            "last_check_time": isoformat(self.last_check_time),
            "last_check_note": self.last_check_note,
            "feed_stats": {
                feed_id: {**asdict(stats), "last_update": isoformat(stats.last_update)}
                for feed_id, stats in self.feed_stats.items()
            },
        }

    def summary(self, now: float) -> str:
        """One-line summary for the periodic statistics log."""
        hours = self.uptime(now) / 3600
        attempted = self.successful_updates + self.failed_updates
        rate = (100.0 * self.successful_updates / attempted) if attempted else 0.0
        return (
            f"Uptime {hours:.1f}h | updates {self.successful_updates}/{attempted} "
            f"({rate:.1f}% success) | skipped {self.skipped_updates}"
        )
