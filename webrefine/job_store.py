"""
Ordered in-memory store of batch jobs with atomic per-job transitions.

Every job is an immutable value. A transition builds a new Job from the old
one plus a patch, checks the invariants, swaps it in under the store lock and
then publishes a JobUpdatedEvent. Readers therefore never see a half-applied
transition, and snapshots stay valid while the pipeline keeps mutating the
store.

Key Design Principles:
- Insertion order = processing order; jobs are never reordered
- Terminal stage states only change through reset()
- Snapshots are tuples of immutable Jobs (copy-on-read)
- Change notification through the EventBus, never through polling

Usage:
    store = JobStore.create(["https://a.example", "", "https://b.example"])
    job = store.snapshot()[0]
    store.update(job.id, extraction_state=StageState.PENDING)
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from webrefine.error_handler import (
    InvalidJobStateError,
    JobNotFoundError,
    StoreBusyError,
)
from webrefine.event_system import EventBus, JobUpdatedEvent, StoreClearedEvent
from webrefine.terminal_utils import Symbols

logger = logging.getLogger(__name__)


class StageState(Enum):
    """State of one stage (extraction or transformation) of a job"""

    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (StageState.SUCCESS, StageState.FAILED)

    def get_symbol(self) -> str:
        """Get the display symbol (emoji or ASCII) based on terminal capabilities"""
        symbol_map = {
            StageState.IDLE: Symbols.IDLE,
            StageState.PENDING: Symbols.PROCESSING,
            StageState.SUCCESS: Symbols.COMPLETE,
            StageState.FAILED: Symbols.FAILED,
        }
        return Symbols.get(symbol_map[self])


@dataclass(frozen=True)
class ExtractedContent:
    """Text retrieved for a URL plus the title inferred from it"""

    title: str
    content: str


def _empty_metadata() -> Mapping[str, str]:
    return MappingProxyType({})


@dataclass(frozen=True)
class Job:
    """
    One URL's unit of work through extraction and optional transformation.

    Instances are immutable: JobStore.update() replaces the stored value.
    """

    id: str
    url: str
    extraction_state: StageState = StageState.IDLE
    extracted: Optional[ExtractedContent] = None
    transform_state: StageState = StageState.IDLE
    transformed: Optional[str] = None
    error: Optional[str] = None
    # Extra input columns, carried through to the export untouched
    metadata: Mapping[str, str] = field(default_factory=_empty_metadata)

    @property
    def title(self) -> str:
        return self.extracted.title if self.extracted else ""

    @property
    def has_failed(self) -> bool:
        return StageState.FAILED in (self.extraction_state, self.transform_state)

    @property
    def is_pending(self) -> bool:
        return StageState.PENDING in (self.extraction_state, self.transform_state)

    def check_invariants(self) -> None:
        """Raise InvalidJobStateError if the field combination is not a legal state."""
        if (
            self.transform_state != StageState.IDLE
            and self.extraction_state != StageState.SUCCESS
        ):
            raise InvalidJobStateError(
                f"Job {self.id}: transform_state={self.transform_state.value} "
                f"requires successful extraction "
                f"(extraction_state={self.extraction_state.value})"
            )
        if (
            self.extraction_state == StageState.PENDING
            and self.transform_state == StageState.PENDING
        ):
            raise InvalidJobStateError(
                f"Job {self.id}: extraction and transformation cannot both be pending"
            )
        if (self.extracted is not None) != (
            self.extraction_state == StageState.SUCCESS
        ):
            raise InvalidJobStateError(
                f"Job {self.id}: extracted content must be present exactly when "
                f"extraction succeeded (state={self.extraction_state.value})"
            )
        if (self.transformed is not None) != (
            self.transform_state == StageState.SUCCESS
        ):
            raise InvalidJobStateError(
                f"Job {self.id}: transformed content must be present exactly when "
                f"transformation succeeded (state={self.transform_state.value})"
            )
        if (self.error is not None) != self.has_failed:
            raise InvalidJobStateError(
                f"Job {self.id}: error message must be present exactly when a stage failed"
            )


# Fields a transition may touch; id, url and metadata are fixed at creation
_PATCHABLE_FIELDS = frozenset(
    {"extraction_state", "extracted", "transform_state", "transformed", "error"}
)

# (state field, payload field) per stage
_STAGES: Tuple[Tuple[str, str], ...] = (
    ("extraction_state", "extracted"),
    ("transform_state", "transformed"),
)


def _check_terminal_stages_unchanged(previous: Job, updated: Job) -> None:
    for state_field, payload_field in _STAGES:
        old_state: StageState = getattr(previous, state_field)
        if not old_state.is_terminal:
            continue
        if getattr(updated, state_field) != old_state or getattr(
            updated, payload_field
        ) != getattr(previous, payload_field):
            raise InvalidJobStateError(
                f"Job {previous.id}: {state_field} is terminal "
                f"({old_state.value}); call reset() before re-running it"
            )


class JobStore:
    """
    Ordered collection of Jobs shared between the caller and the pipeline.

    Thread Safety:
    - All reads and writes of _jobs happen under _lock
    - Events are published after the lock is released, so handlers may
      read the store freely
    """

    def __init__(self, event_bus: Optional[EventBus] = None) -> None:
        self._event_bus = event_bus
        # Keyed by id; dict order is processing order
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.RLock()
        self._run_in_progress = False
        self._next_index = 0

    @classmethod
    def create(
        cls,
        urls: Sequence[str],
        metadata: Optional[Sequence[Mapping[str, Any]]] = None,
        event_bus: Optional[EventBus] = None,
    ) -> "JobStore":
        """
        Build a store with one IDLE job per non-empty URL, in input order.

        Args:
            urls: URLs in processing order; empty/whitespace entries are dropped
            metadata: Optional per-URL extra columns, aligned with urls
            event_bus: Bus that receives JobUpdatedEvent for every transition

        Returns:
            New JobStore
        """
        store = cls(event_bus=event_bus)
        store.add_urls(urls, metadata)
        return store

    def add_urls(
        self,
        urls: Sequence[str],
        metadata: Optional[Sequence[Mapping[str, Any]]] = None,
    ) -> List[Job]:
        """Append jobs for the non-empty URLs. Not allowed during a run."""
        if metadata is not None and len(metadata) != len(urls):
            raise ValueError(
                f"metadata has {len(metadata)} rows but {len(urls)} URLs were given"
            )

        added: List[Job] = []
        with self._lock:
            if self._run_in_progress:
                raise StoreBusyError("Cannot add jobs while a run is in progress")
            for position, raw_url in enumerate(urls):
                url = (raw_url or "").strip()
                if not url:
                    continue
                extra = metadata[position] if metadata is not None else {}
                job = Job(
                    id=f"job-{self._next_index}-{uuid.uuid4().hex[:8]}",
                    url=url,
                    metadata=MappingProxyType(
                        {str(k): "" if v is None else str(v) for k, v in extra.items()}
                    ),
                )
                self._next_index += 1
                self._jobs[job.id] = job
                added.append(job)

        skipped = len(urls) - len(added)
        logger.info(
            f"Added {len(added)} jobs to store"
            + (f" ({skipped} empty entries skipped)" if skipped else "")
        )
        for job in added:
            self._publish(JobUpdatedEvent(job=job, previous=None))
        return added

    def get(self, job_id: str) -> Job:
        with self._lock:
            try:
                return self._jobs[job_id]
            except KeyError:
                raise JobNotFoundError(job_id) from None

    def update(self, job_id: str, **patch: Any) -> Job:
        """
        Apply a partial state change to exactly one job.

        Args:
            job_id: Id of the job to change
            **patch: New values for extraction_state, extracted, transform_state,
                     transformed and/or error

        Returns:
            The job after the change

        Raises:
            JobNotFoundError: No job has this id (caller bug)
            InvalidJobStateError: The result would break a Job invariant,
                                  or a terminal stage would change
            TypeError: The patch names a field that cannot be changed
        """
        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise TypeError(f"Cannot patch job fields: {sorted(unknown)}")

        with self._lock:
            previous = self._jobs.get(job_id)
            if previous is None:
                raise JobNotFoundError(job_id)
            updated = replace(previous, **patch)
            _check_terminal_stages_unchanged(previous, updated)
            updated.check_invariants()
            self._jobs[job_id] = updated

        logger.debug(
            f"Job {job_id}: extraction={updated.extraction_state.value} "
            f"transform={updated.transform_state.value}"
        )
        self._publish(JobUpdatedEvent(job=updated, previous=previous))
        return updated

    def reset(self, job_id: str) -> Job:
        """Return a job to IDLE/IDLE so the next run processes it again."""
        with self._lock:
            previous = self._jobs.get(job_id)
            if previous is None:
                raise JobNotFoundError(job_id)
            if previous.is_pending:
                raise StoreBusyError(f"Job {job_id} is in flight and cannot be reset")
            updated = Job(id=previous.id, url=previous.url, metadata=previous.metadata)
            self._jobs[job_id] = updated

        logger.info(f"Job {job_id} reset for re-run ({updated.url})")
        self._publish(JobUpdatedEvent(job=updated, previous=previous))
        return updated

    def reset_failed(self) -> List[str]:
        """Reset every job with a failed stage. Returns the ids that were reset."""
        failed_ids = [job.id for job in self.snapshot() if job.has_failed]
        for job_id in failed_ids:
            self.reset(job_id)
        return failed_ids

    def clear(self) -> int:
        """
        Remove all jobs.

        Returns:
            Number of jobs removed

        Raises:
            StoreBusyError: A run is in progress
        """
        with self._lock:
            if self._run_in_progress:
                raise StoreBusyError("Cannot clear the store while a run is in progress")
            removed = len(self._jobs)
            self._jobs = {}

        logger.info(f"Cleared {removed} jobs from store")
        self._publish(StoreClearedEvent(removed=removed))
        return removed

    def snapshot(self) -> Tuple[Job, ...]:
        """
        Immutable copy of all jobs in processing order.

        Jobs are frozen values, so a shallow copy of the sequence is enough:
        later transitions replace entries in the store, not in the snapshot.
        """
        with self._lock:
            return tuple(self._jobs.values())

    def job_ids(self) -> List[str]:
        with self._lock:
            return list(self._jobs)

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._run_in_progress

    @contextmanager
    def run_guard(self) -> Iterator["JobStore"]:
        """
        Mark the store as owned by a run for the duration of the block.

        Raises:
            StoreBusyError: Another run already owns the store
        """
        with self._lock:
            if self._run_in_progress:
                raise StoreBusyError("A run is already in progress on this store")
            self._run_in_progress = True
        try:
            yield self
        finally:
            with self._lock:
                self._run_in_progress = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __iter__(self) -> Iterator[Job]:
        return iter(self.snapshot())

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs

    def _publish(self, event: Any) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event)
