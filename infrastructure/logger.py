"""
BUILD EVENT LOGGER - The Build Flight Recorder

Records every structural event of a model-graph build so that the decisions
it made (especially the tolerated gaps) can be inspected after the fact.

Architecture:
- BuildEvent: one msgspec record per event
- EventBuffer: thread-safe in-memory ring buffer for recent events
- FileLogger: optional newline-delimited JSON file, one per logger
- BuildLogger: the interface the builder talks to

Usage:
    logger = BuildLogger()
    logger.log_vertex_created("Order", 10)
    logger.log_reference_skipped("Order", 11, "customer", SkipReason.FIELD_UNSET)

    skipped = logger.get_events_by_type(BuildEventType.REFERENCE_SKIPPED.value)

Plain diagnostic logging goes through the standard `logging` module;
configure_logging() sets it up from the [logging] config section.
"""
import io
import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Optional

import msgspec

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger for a migration run."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT, force=True)


# =============================================================================
# EVENTS
# =============================================================================

class BuildEventType(str, Enum):
    """Types of build events."""
    PHASE_STARTED = "PHASE_STARTED"
    PHASE_COMPLETED = "PHASE_COMPLETED"
    VERTEX_CREATED = "VERTEX_CREATED"
    EDGE_CREATED = "EDGE_CREATED"
    REFERENCE_SKIPPED = "REFERENCE_SKIPPED"
    BUILD_FAILED = "BUILD_FAILED"


class BuildEvent(msgspec.Struct, kw_only=True):
    """Individual build event."""
    timestamp: str
    sequence: int
    event_type: str                     # BuildEventType value

    # Phase events
    phase: Optional[str] = None
    count: int = 0

    # Vertex events, and the source side of edge/skip events
    type_name: Optional[str] = None
    vertex_id: Optional[str] = None

    # Edge and skip events
    field_name: Optional[str] = None
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    reason: Optional[str] = None

    # Failure events
    error: Optional[str] = None


def _render_id(value: Any) -> Optional[str]:
    return None if value is None else str(value)


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class LoggerConfig:
    """Configuration for the build event logger."""
    enable_file_log: bool = False       # Enable file-based logging
    log_path: Optional[Path] = None     # Directory for log files
    buffer_size: int = 10000            # In-memory buffer size

    def __post_init__(self):
        if self.log_path is None:
            self.log_path = Path("./workspace/logs")


# =============================================================================
# EVENT BUFFER
# =============================================================================

class EventBuffer:
    """
    Thread-safe ring buffer for recent build events.

    Provides O(1) append and O(n) filtered queries.
    """

    def __init__(self, max_size: int = 10000):
        self._buffer: deque[BuildEvent] = deque(maxlen=max_size)
        self._lock = threading.RLock()
        self._sequence = 0

    def append(self, event: BuildEvent) -> None:
        with self._lock:
            self._buffer.append(event)

    def get_last(self, n: int) -> List[BuildEvent]:
        """Get the last n events."""
        with self._lock:
            items = list(self._buffer)
            return items[-n:] if len(items) >= n else items

    def get_by_type(self, event_type: str) -> List[BuildEvent]:
        with self._lock:
            return [e for e in self._buffer if e.event_type == event_type]

    def get_by_vertex(self, type_name: str, vertex_id: Any) -> List[BuildEvent]:
        """Events whose source side is the given vertex."""
        rendered = _render_id(vertex_id)
        with self._lock:
            return [
                e for e in self._buffer
                if e.type_name == type_name and e.vertex_id == rendered
            ]

    def next_sequence(self) -> int:
        with self._lock:
            self._sequence += 1
            return self._sequence

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


# =============================================================================
# FILE LOGGER
# =============================================================================

class FileLogger:
    """
    File-based event logger.

    Appends events as newline-delimited JSON to build_<date>.jsonl, the date
    being the UTC day of the first write. A build never spans two files.
    """

    def __init__(self, log_path: Path):
        self._log_path = log_path
        self._current_file: Optional[io.TextIOWrapper] = None
        self._lock = threading.Lock()
        self._encoder = msgspec.json.Encoder()

        log_path.mkdir(parents=True, exist_ok=True)

    def write(self, event: BuildEvent) -> None:
        with self._lock:
            self._ensure_file()
            self._current_file.write(self._encoder.encode(event).decode("utf-8") + "\n")
            self._current_file.flush()

    def _ensure_file(self) -> None:
        if self._current_file is None:
            today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
            self._current_file = open(self._log_path / f"build_{today}.jsonl", "a", encoding="utf-8")

    def close(self) -> None:
        with self._lock:
            if self._current_file:
                self._current_file.close()
                self._current_file = None

    def read_log(self, date: str) -> List[BuildEvent]:
        """Read events from a specific date's log."""
        filepath = self._log_path / f"build_{date}.jsonl"
        if not filepath.exists():
            return []

        decoder = msgspec.json.Decoder(type=BuildEvent)
        with open(filepath, "r", encoding="utf-8") as f:
            return [decoder.decode(line) for line in f if line.strip()]


# =============================================================================
# BUILD LOGGER (Main Interface)
# =============================================================================

class BuildLogger:
    """
    Main logging interface for build events.

    Events go to the in-memory buffer (always), the JSON-lines file
    (configurable) and any subscribers. Thread-safe for concurrent logging.
    """

    def __init__(self, config: Optional[LoggerConfig] = None):
        self.config = config or LoggerConfig()

        self._buffer = EventBuffer(self.config.buffer_size)
        self._file_logger: Optional[FileLogger] = None
        if self.config.enable_file_log and self.config.log_path:
            self._file_logger = FileLogger(self.config.log_path)

        self._subscribers: List[Callable[[BuildEvent], None]] = []

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def _emit(self, event_type: BuildEventType, **fields: Any) -> BuildEvent:
        event = BuildEvent(
            timestamp=self._now(),
            sequence=self._buffer.next_sequence(),
            event_type=event_type.value,
            **fields,
        )
        self._buffer.append(event)
        if self._file_logger:
            self._file_logger.write(event)
        for subscriber in self._subscribers:
            subscriber(event)
        return event

    # =========================================================================
    # LOGGING METHODS
    # =========================================================================

    def log_phase_started(self, phase: str) -> BuildEvent:
        return self._emit(BuildEventType.PHASE_STARTED, phase=phase)

    def log_phase_completed(self, phase: str, count: int) -> BuildEvent:
        """Log the end of a phase with the number of vertices or edges it produced."""
        return self._emit(BuildEventType.PHASE_COMPLETED, phase=phase, count=count)

    def log_vertex_created(self, type_name: str, vertex_id: Any) -> BuildEvent:
        return self._emit(
            BuildEventType.VERTEX_CREATED,
            type_name=type_name,
            vertex_id=_render_id(vertex_id),
        )

    def log_edge_created(
        self,
        type_name: str,
        vertex_id: Any,
        field_name: str,
        target_type: str,
        target_id: Any,
    ) -> BuildEvent:
        return self._emit(
            BuildEventType.EDGE_CREATED,
            type_name=type_name,
            vertex_id=_render_id(vertex_id),
            field_name=field_name,
            target_type=target_type,
            target_id=_render_id(target_id),
        )

    def log_reference_skipped(
        self,
        type_name: str,
        vertex_id: Any,
        field_name: str,
        reason: str,
        target_type: Optional[str] = None,
        target_id: Any = None,
    ) -> BuildEvent:
        """Log a tolerated gap: no edge was created for one relationship occurrence."""
        return self._emit(
            BuildEventType.REFERENCE_SKIPPED,
            type_name=type_name,
            vertex_id=_render_id(vertex_id),
            field_name=field_name,
            reason=getattr(reason, "value", reason),
            target_type=target_type,
            target_id=_render_id(target_id),
        )

    def log_build_failed(self, phase: str, error: BaseException) -> BuildEvent:
        return self._emit(
            BuildEventType.BUILD_FAILED,
            phase=phase,
            error=f"{type(error).__name__}: {error}",
        )

    # =========================================================================
    # QUERY METHODS
    # =========================================================================

    def get_recent_events(self, n: int = 100) -> List[BuildEvent]:
        return self._buffer.get_last(n)

    def get_events_by_type(self, event_type: str) -> List[BuildEvent]:
        return self._buffer.get_by_type(event_type)

    def get_events_for_vertex(self, type_name: str, vertex_id: Any) -> List[BuildEvent]:
        return self._buffer.get_by_vertex(type_name, vertex_id)

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    def subscribe(self, callback: Callable[[BuildEvent], None]) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[BuildEvent], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def close(self) -> None:
        if self._file_logger:
            self._file_logger.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

_global_logger: Optional[BuildLogger] = None


def get_logger() -> BuildLogger:
    """Get or create the global build logger."""
    global _global_logger
    if _global_logger is None:
        _global_logger = BuildLogger()
    return _global_logger


def configure_logger(config: Optional[LoggerConfig]) -> Optional[BuildLogger]:
    """
    Replace the global build logger.

    Passing None closes the current logger and resets to lazy creation.
    """
    global _global_logger
    if _global_logger:
        _global_logger.close()
    _global_logger = BuildLogger(config) if config is not None else None
    return _global_logger
