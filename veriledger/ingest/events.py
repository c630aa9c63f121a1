"""Pipeline event log.

Records what happened to each content id as it moves through the pipeline:
- Discoveries from the ledger watcher
- Gateway failures, fetch exhaustion and substitutions
- Oracle enrichment skips
- Processed and failed claims

Events are forwarded to ``logging`` and kept in a bounded in-memory history
that operational layers (CLI, API) can read.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

# Number of events retained in memory
DEFAULT_HISTORY_SIZE = 500


class EventSeverity(Enum):
    """Event severity levels."""
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class EventType(Enum):
    """Types of pipeline events."""
    WATCHER_STARTED = "WATCHER_STARTED"
    WATCHER_STOPPED = "WATCHER_STOPPED"
    CLAIM_DISCOVERED = "CLAIM_DISCOVERED"
    POLL_FAILED = "POLL_FAILED"
    GATEWAY_FAILED = "GATEWAY_FAILED"
    CONTENT_FETCHED = "CONTENT_FETCHED"
    CONTENT_SUBSTITUTED = "CONTENT_SUBSTITUTED"
    FETCH_EXHAUSTED = "FETCH_EXHAUSTED"
    ORACLE_SKIPPED = "ORACLE_SKIPPED"
    CLAIM_PROCESSED = "CLAIM_PROCESSED"
    CLAIM_FAILED = "CLAIM_FAILED"


_LOG_LEVELS = {
    EventSeverity.INFO.value: logging.INFO,
    EventSeverity.WARNING.value: logging.WARNING,
    EventSeverity.CRITICAL.value: logging.ERROR,
}


@dataclass
class PipelineEvent:
    """Individual pipeline event."""
    event_type: str
    severity: str
    message: str
    content_id: Optional[str] = None
    gateway: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        # Remove None values
        return {k: v for k, v in d.items() if v is not None}


class EventLog:
    """Thread-safe bounded event history with subscribers."""

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE):
        self._lock = threading.Lock()
        self._events: Deque[PipelineEvent] = deque(maxlen=history_size)
        self._subscribers: List[Callable[[PipelineEvent], None]] = []

    def subscribe(self, callback: Callable[[PipelineEvent], None]) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def emit(
        self,
        event_type: EventType,
        message: str,
        severity: EventSeverity = EventSeverity.INFO,
        content_id: Optional[str] = None,
        gateway: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> PipelineEvent:
        """Record an event, log it, and notify subscribers."""
        event = PipelineEvent(
            event_type=event_type.value,
            severity=severity.value,
            message=message,
            content_id=content_id,
            gateway=gateway,
            details=details,
        )

        with self._lock:
            self._events.append(event)
            subscribers = list(self._subscribers)

        logger.log(_LOG_LEVELS.get(event.severity, logging.INFO), f"[{event.event_type}] {message}")

        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Event subscriber failed for {event.event_type}: {e}")

        return event

    def recent(self, limit: Optional[int] = None, event_type: Optional[EventType] = None) -> List[PipelineEvent]:
        """Return recent events, oldest first."""
        with self._lock:
            events = list(self._events)
        if event_type is not None:
            events = [e for e in events if e.event_type == event_type.value]
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def summary(self) -> Dict[str, int]:
        with self._lock:
            events = list(self._events)
        return {
            "total_events": len(events),
            "critical": sum(1 for e in events if e.severity == EventSeverity.CRITICAL.value),
            "warning": sum(1 for e in events if e.severity == EventSeverity.WARNING.value),
            "info": sum(1 for e in events if e.severity == EventSeverity.INFO.value),
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
