"""
Unit tests for webrefine/event_system.py

Tests cover EventBus subscription, synchronous delivery, subclass matching,
handler failure isolation, thread safety and event creation. All tests use
real events and real threads.
"""

import threading
from typing import List

from webrefine.event_system import (
    Event,
    EventBus,
    JobUpdatedEvent,
    RunFinishedEvent,
    RunStartedEvent,
    StoreClearedEvent,
)
from webrefine.job_store import Job, StageState

# ============================================================================
# EventBus core functionality
# ============================================================================


def test_basic_publish_subscribe_flow():
    """Handler is called synchronously with the exact event published."""
    bus = EventBus()
    received: List[RunStartedEvent] = []
    bus.subscribe(RunStartedEvent, received.append)

    event = RunStartedEvent(total=3, queued=2)
    count = bus.publish(event)

    # Delivered before publish() returned
    assert count == 1
    assert received == [event]
    assert received[0].total == 3
    assert received[0].queued == 2


def test_multiple_handlers_called_in_registration_order():
    bus = EventBus()
    order: List[str] = []
    bus.subscribe(StoreClearedEvent, lambda e: order.append("first"))
    bus.subscribe(StoreClearedEvent, lambda e: order.append("second"))
    bus.subscribe(StoreClearedEvent, lambda e: order.append("third"))

    bus.publish(StoreClearedEvent(removed=2))

    assert order == ["first", "second", "third"]


def test_type_based_subscriptions():
    """Handlers only receive the type they subscribed to."""
    bus = EventBus()
    started: List[Event] = []
    finished: List[Event] = []
    bus.subscribe(RunStartedEvent, started.append)
    bus.subscribe(RunFinishedEvent, finished.append)

    bus.publish(RunStartedEvent(total=1, queued=1))
    bus.publish(RunFinishedEvent(completed=1, total=1))

    assert len(started) == 1
    assert len(finished) == 1
    assert isinstance(finished[0], RunFinishedEvent)


def test_base_event_subscription_receives_everything():
    bus = EventBus()
    everything: List[Event] = []
    bus.subscribe(Event, everything.append)

    bus.publish(RunStartedEvent(total=0, queued=0))
    bus.publish(StoreClearedEvent())

    assert [type(e) for e in everything] == [RunStartedEvent, StoreClearedEvent]


def test_publish_without_subscribers():
    bus = EventBus()
    assert bus.publish(StoreClearedEvent()) == 0
    assert bus.get_stats()["published"] == 1


def test_unsubscribe():
    bus = EventBus()
    received: List[Event] = []
    bus.subscribe(StoreClearedEvent, received.append)

    assert bus.unsubscribe(StoreClearedEvent, received.append) is True
    assert bus.unsubscribe(StoreClearedEvent, received.append) is False

    bus.publish(StoreClearedEvent())
    assert received == []


def test_handler_exception_isolation():
    """A failing handler is logged; later handlers still run."""
    bus = EventBus()
    received: List[Event] = []

    def broken(event: Event) -> None:
        raise RuntimeError("observer bug")

    bus.subscribe(StoreClearedEvent, broken)
    bus.subscribe(StoreClearedEvent, received.append)

    count = bus.publish(StoreClearedEvent(removed=1))

    assert count == 2
    assert len(received) == 1
    stats = bus.get_stats()
    assert stats["failed"] == 1
    assert stats["delivered"] == 1


def test_get_stats_returns_correct_metrics():
    bus = EventBus()
    bus.subscribe(RunStartedEvent, lambda e: None)

    for _ in range(3):
        bus.publish(RunStartedEvent(total=1, queued=1))
    bus.publish(StoreClearedEvent())

    assert bus.get_stats() == {"published": 4, "delivered": 3, "failed": 0}


def test_concurrent_publishing_from_threads():
    """Every event published from worker threads is delivered exactly once."""
    bus = EventBus()
    received: List[Event] = []
    lock = threading.Lock()

    def handler(event: Event) -> None:
        with lock:
            received.append(event)

    bus.subscribe(StoreClearedEvent, handler)

    def worker(n: int) -> None:
        for i in range(50):
            bus.publish(StoreClearedEvent(removed=n * 100 + i))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(received) == 200
    assert len({e.event_id for e in received}) == 200
    assert bus.get_stats()["delivered"] == 200


# ============================================================================
# Event creation
# ============================================================================


def test_event_defaults():
    first = StoreClearedEvent()
    second = StoreClearedEvent()
    assert first.removed == 0
    assert first.event_id != second.event_id
    assert first.timestamp <= second.timestamp


def test_job_updated_event_fields():
    before = Job(id="job-0-abc", url="https://example.com")
    after = Job(
        id="job-0-abc",
        url="https://example.com",
        extraction_state=StageState.PENDING,
    )

    event = JobUpdatedEvent(job=after, previous=before)

    assert event.job.extraction_state == StageState.PENDING
    assert event.previous is before
    assert JobUpdatedEvent(job=before).previous is None


def test_run_finished_defaults_to_not_cancelled():
    event = RunFinishedEvent(completed=2, total=3)
    assert event.cancelled is False
