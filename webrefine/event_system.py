"""
Event-driven change notification for WebRefine.

The JobStore publishes an event after every job transition and the
BatchPipeline publishes run lifecycle events. Observers (progress display,
log lines, tests) subscribe to the event types they care about and react
without polling, while the pipeline stays free of presentation concerns.

Key Design Principles:
- Synchronous delivery: publish() calls subscribers before returning, so an
  observer always sees a transition before the pipeline makes the next one
- Type-based subscriptions: handlers receive events of the subscribed type
  and of its subclasses (subscribe to Event to receive everything)
- Fail-safe: a failing handler is logged and does not affect the publisher

Usage:
    bus = EventBus()
    bus.subscribe(JobUpdatedEvent, on_job_updated)
    store = JobStore.create(urls, event_bus=bus)
"""

import logging
import threading
import uuid
from abc import ABC
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Type, TypeVar

if TYPE_CHECKING:
    from webrefine.job_store import Job

logger = logging.getLogger(__name__)


# ============================================================================
# Event Base Classes
# ============================================================================


@dataclass
class Event(ABC):
    """
    Base class for all events in the system.

    All events have a timestamp and unique ID for tracking and debugging.
    Events are created once and never modified after publishing.
    """

    timestamp: datetime = field(default_factory=datetime.now)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))


E = TypeVar("E", bound=Event)


# ============================================================================
# Store Events
# ============================================================================


@dataclass
class JobUpdatedEvent(Event):
    """
    A job changed state.

    Fields:
        job: The job after the transition
        previous: The job before the transition (None for newly added jobs)
    """

    job: "Job" = field(kw_only=True)
    previous: Optional["Job"] = field(default=None, kw_only=True)


@dataclass
class StoreClearedEvent(Event):
    """All jobs were removed from the store."""

    removed: int = field(default=0, kw_only=True)


# ============================================================================
# Run Lifecycle Events
# ============================================================================


@dataclass
class RunStartedEvent(Event):
    """
    A pipeline run began.

    Fields:
        total: Number of jobs in the store
        queued: Number of jobs that will be processed (extraction state IDLE)
    """

    total: int = field(kw_only=True)
    queued: int = field(kw_only=True)


@dataclass
class RunFinishedEvent(Event):
    """A pipeline run ended, normally or by cancellation."""

    completed: int = field(kw_only=True)
    total: int = field(kw_only=True)
    cancelled: bool = field(default=False, kw_only=True)


# ============================================================================
# Event Bus
# ============================================================================


class EventBus:
    """
    Thread-safe publish/subscribe bus with synchronous delivery.

    Thread Safety:
    - subscribe()/unsubscribe(): protected by _lock
    - publish(): copies the handler list under _lock, calls handlers outside it
    """

    def __init__(self) -> None:
        self._subscribers: Dict[Type[Event], List[Callable[[Event], None]]] = (
            defaultdict(list)
        )
        self._lock = threading.Lock()
        self._stats_lock = threading.Lock()

        self._published_count = 0
        self._delivered_count = 0
        self._failed_count = 0

        logger.debug("EventBus initialized")

    def subscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> None:
        """
        Subscribe to an event type.

        Multiple handlers can subscribe to the same event type; they are
        called in registration order.

        Example:
            def on_job(event: JobUpdatedEvent) -> None:
                print(event.job.url, event.job.extraction_state)

            bus.subscribe(JobUpdatedEvent, on_job)
        """
        with self._lock:
            self._subscribers[event_type].append(handler)  # type: ignore[arg-type]
        logger.debug(
            f"Subscribed {getattr(handler, '__name__', repr(handler))} "
            f"to {event_type.__name__}"
        )

    def unsubscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> bool:
        """Remove a handler. Returns False if it was not subscribed."""
        with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)  # type: ignore[arg-type]
                return True
        return False

    def publish(self, event: Event) -> int:
        """
        Deliver an event to every matching subscriber.

        Returns:
            Number of handlers that were called
        """
        with self._stats_lock:
            self._published_count += 1

        handlers = self._handlers_for(type(event))
        if not handlers:
            return 0

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # One broken observer must not stop the pipeline
                with self._stats_lock:
                    self._failed_count += 1
                logger.error(
                    f"Handler {getattr(handler, '__name__', repr(handler))} failed "
                    f"for {type(event).__name__}: {e}",
                    exc_info=True,
                )
            else:
                with self._stats_lock:
                    self._delivered_count += 1

        return len(handlers)

    def _handlers_for(self, event_type: Type[Event]) -> List[Callable[[Event], None]]:
        # Copy under lock: subscribe() may run while we iterate
        with self._lock:
            handlers: List[Callable[[Event], None]] = []
            for klass in event_type.__mro__:
                handlers.extend(self._subscribers.get(klass, []))
        return handlers

    def get_stats(self) -> Dict[str, int]:
        """
        Get event bus statistics for monitoring.

        Returns:
            Dict with published, delivered and failed handler counts
        """
        with self._stats_lock:
            return {
                "published": self._published_count,
                "delivered": self._delivered_count,
                "failed": self._failed_count,
            }
