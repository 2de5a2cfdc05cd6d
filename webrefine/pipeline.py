"""
Sequential batch pipeline: drives every job through extraction and then
(optionally) transformation, writing each transition back to the JobStore.

Per-job state machine:

    Idle -> ExtractionPending -> ExtractionSucceeded -> (no transform) Complete
                              -> ExtractionFailed                   [terminal]
    ExtractionSucceeded -> TransformPending -> TransformSucceeded   [terminal]
                                            -> TransformFailed      [terminal]

Key Design Principles:
- Strictly sequential: one outstanding external call at any instant
- Jobs finish in store order; a job reaches a terminal state before the
  next one starts
- Per-job failures never abort the run; ConfigurationError does
- Cancellation is cooperative and checked between jobs
- progress() is always recomputed from the store, never cached
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional, Tuple

from webrefine.config import (
    EXTRACTION_TIMEOUT_SECONDS,
    TRANSFORM_TIMEOUT_SECONDS,
    WebRefineConfig,
)
from webrefine.error_handler import (
    ConfigurationError,
    ExtractionError,
    TransformationError,
)
from webrefine.event_system import Event, EventBus, RunFinishedEvent, RunStartedEvent
from webrefine.extractor import ContentExtractor
from webrefine.job_store import ExtractedContent, Job, JobStore, StageState
from webrefine.sample_loader import SampleTemplate
from webrefine.transformer import ContentTransformer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransformSpec:
    """
    What the transformation stage should do.

    Active when there is a non-blank instruction
    or a non-blank sample. When inactive, jobs complete right after
    extraction.
    """

    instruction: str = ""
    sample: Optional[SampleTemplate] = None

    @property
    def is_active(self) -> bool:
        return bool(self.instruction.strip()) or (
            self.sample is not None and not self.sample.is_empty
        )

    @classmethod
    def from_config(
        cls, config: WebRefineConfig, sample: Optional[SampleTemplate] = None
    ) -> "TransformSpec":
        return cls(instruction=config.resolve_instruction(), sample=sample)


@dataclass(frozen=True)
class RunSummary:
    """Outcome of one BatchPipeline.run() call."""

    total: int  # Jobs in the store
    completed: int  # Jobs in a terminal state at the end of the run
    extracted: int  # Successful extractions during this run
    transformed: int  # Successful transformations during this run
    failed: int  # Jobs that failed a stage during this run
    skipped: int  # Jobs not processed because their extraction was not Idle
    cancelled: bool
    duration: float  # Seconds


def is_job_complete(job: Job, transform_active: bool) -> bool:
    """True once the job needs no further work for the given transformation setting."""
    if job.extraction_state == StageState.FAILED:
        return True
    if job.transform_state in (StageState.SUCCESS, StageState.FAILED):
        return True
    return job.extraction_state == StageState.SUCCESS and not transform_active


class BatchPipeline:
    """
    Runs the jobs of a JobStore through an extractor and a transformer.

    Usage:
        pipeline = BatchPipeline(store, extractor, transformer, TransformSpec("Summarize"))
        summary = await pipeline.run()
    """

    def __init__(
        self,
        store: JobStore,
        extractor: ContentExtractor,
        transformer: Optional[ContentTransformer] = None,
        transform_spec: Optional[TransformSpec] = None,
        extraction_timeout: float = EXTRACTION_TIMEOUT_SECONDS,
        transform_timeout: float = TRANSFORM_TIMEOUT_SECONDS,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        if extraction_timeout <= 0 or transform_timeout <= 0:
            raise ConfigurationError("Pipeline timeouts must be positive")
        self.store = store
        self.extractor = extractor
        self.transformer = transformer
        self.transform_spec = transform_spec or TransformSpec()
        self.extraction_timeout = extraction_timeout
        self.transform_timeout = transform_timeout
        self.event_bus = event_bus

        self._cancel_event = threading.Event()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """
        Ask the current run to stop after the in-flight job.

        Safe to call from a signal handler or another thread.
        """
        if self._running and not self._cancel_event.is_set():
            logger.info("Cancellation requested - finishing current job")
        self._cancel_event.set()

    def progress(self) -> Tuple[int, int]:
        """(completed, total) computed from the current store contents."""
        snapshot = self.store.snapshot()
        active = self.transform_spec.is_active
        completed = sum(1 for job in snapshot if is_job_complete(job, active))
        return completed, len(snapshot)

    def _check_configured(self) -> None:
        self.extractor.ensure_configured()
        if self.transform_spec.is_active:
            if self.transformer is None:
                raise ConfigurationError(
                    "A transformation was requested but no transformer is configured"
                )
            self.transformer.ensure_configured()

    async def run(self) -> RunSummary:
        """
        Process every job whose extraction state is Idle, in store order.

        Returns:
            RunSummary for this run

        Raises:
            StoreBusyError: A run is already in progress on this store
            ConfigurationError: Collaborators are not usable (before any job
                                starts) or a credential was rejected mid-run
        """
        with self.store.run_guard():
            self._running = True
            start = time.monotonic()
            extracted = transformed = failed = skipped = 0
            completed_jobs = 0
            started = False
            try:
                self._check_configured()

                job_ids = self.store.job_ids()
                queued = sum(
                    1
                    for job in self.store.snapshot()
                    if job.extraction_state == StageState.IDLE
                )
                logger.info(
                    f"Run started: {queued} of {len(job_ids)} jobs queued "
                    f"(transformation {'on' if self.transform_spec.is_active else 'off'})"
                )
                self._publish(RunStartedEvent(total=len(job_ids), queued=queued))
                started = True

                for job_id in job_ids:
                    if self._cancel_event.is_set():
                        logger.info("Run cancelled before all jobs were processed")
                        break

                    job = self.store.get(job_id)
                    if job.extraction_state != StageState.IDLE:
                        skipped += 1
                        continue

                    job = await self._run_extraction(job)
                    if job.extraction_state == StageState.SUCCESS:
                        extracted += 1
                        if self.transform_spec.is_active:
                            job = await self._run_transformation(job)
                            if job.transform_state == StageState.SUCCESS:
                                transformed += 1
                    if job.has_failed:
                        failed += 1
            finally:
                completed_jobs, total = self.progress()
                cancelled = self._cancel_event.is_set()
                # A request made before run() started applies to this run only
                self._cancel_event.clear()
                self._running = False
                if started:
                    self._publish(
                        RunFinishedEvent(
                            completed=completed_jobs, total=total, cancelled=cancelled
                        )
                    )

        summary = RunSummary(
            total=total,
            completed=completed_jobs,
            extracted=extracted,
            transformed=transformed,
            failed=failed,
            skipped=skipped,
            cancelled=cancelled,
            duration=time.monotonic() - start,
        )
        logger.info(
            f"Run finished: {summary.completed}/{summary.total} complete, "
            f"{summary.failed} failed, {summary.skipped} skipped"
            + (" (cancelled)" if summary.cancelled else "")
        )
        return summary

    async def _run_extraction(self, job: Job) -> Job:
        job = self.store.update(job.id, extraction_state=StageState.PENDING)
        logger.debug(f"Extracting {job.url}")
        try:
            content = await asyncio.wait_for(
                self.extractor.extract(job.url), timeout=self.extraction_timeout
            )
        except asyncio.TimeoutError:
            return self._fail_extraction(
                job, f"Extraction timed out after {self.extraction_timeout:g}s"
            )
        except asyncio.CancelledError:
            self._fail_extraction(job, "Extraction cancelled before completion")
            raise
        except ConfigurationError as e:
            self._fail_extraction(job, str(e))
            raise
        except ExtractionError as e:
            return self._fail_extraction(job, e.message)
        except Exception as e:
            logger.exception(f"Unexpected error while extracting {job.url}")
            return self._fail_extraction(job, f"Unexpected error: {e}")

        if not isinstance(content, ExtractedContent) or not content.content.strip():
            return self._fail_extraction(job, "Extractor returned no content")

        return self.store.update(
            job.id, extraction_state=StageState.SUCCESS, extracted=content
        )

    async def _run_transformation(self, job: Job) -> Job:
        # is_active guarantees a transformer (checked in _check_configured)
        assert self.transformer is not None
        assert job.extracted is not None
        job = self.store.update(job.id, transform_state=StageState.PENDING)
        logger.debug(f"Transforming content of {job.url}")
        try:
            result = await asyncio.wait_for(
                self.transformer.transform(
                    job.extracted.content,
                    self.transform_spec.instruction,
                    self.transform_spec.sample,
                ),
                timeout=self.transform_timeout,
            )
        except asyncio.TimeoutError:
            return self._fail_transformation(
                job, f"Transformation timed out after {self.transform_timeout:g}s"
            )
        except asyncio.CancelledError:
            self._fail_transformation(job, "Transformation cancelled before completion")
            raise
        except ConfigurationError as e:
            self._fail_transformation(job, str(e))
            raise
        except TransformationError as e:
            return self._fail_transformation(job, e.message)
        except Exception as e:
            logger.exception(f"Unexpected error while transforming {job.url}")
            return self._fail_transformation(job, f"Unexpected error: {e}")

        if not isinstance(result, str) or not result.strip():
            return self._fail_transformation(job, "Transformer returned no content")

        return self.store.update(
            job.id, transform_state=StageState.SUCCESS, transformed=result
        )

    def _fail_extraction(self, job: Job, message: str) -> Job:
        logger.warning(f"Extraction failed for {job.url}: {message}")
        return self.store.update(
            job.id, extraction_state=StageState.FAILED, error=message
        )

    def _fail_transformation(self, job: Job, message: str) -> Job:
        logger.warning(f"Transformation failed for {job.url}: {message}")
        return self.store.update(
            job.id, transform_state=StageState.FAILED, error=message
        )

    def _publish(self, event: Event) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event)
