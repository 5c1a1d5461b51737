"""
Job orchestration and lifecycle management for coloring book PDFs.

This module manages the end-to-end lifecycle of PDF generation jobs:
- Submission validation and job registration
- Background execution on a worker pool (compose, then publish)
- Status tracking and event logging
- Cancellation of jobs that have not finished

The JobManager class provides the core business logic for the API,
coordinating between user requests, the job store and the PDF pipeline.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Sequence
from uuid import uuid4

from omegaconf import DictConfig

from .composer import DocumentComposer, PageKind
from .errors import JobCancelledError, JobStateError, NotFoundError, ValidationError
from .image_refs import parse_image_ref
from .job_store import InMemoryJobStore, JobRecord, JobStore
from .models import JobDetail, JobEvent, JobStatus, JobStatusResponse, JobSummary
from .publisher import ArtifactPublisher
from .resolver import ImageResolver
from .storage import ObjectStorage

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "PDF generation failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobManager:
    """
    Central coordinator for job lifecycle management.

    Submission happens on the caller's thread; composition and publication
    run on a ThreadPoolExecutor, one task per job. Each job's record is only
    written by its own worker once submission returns, and the job store
    serializes inserts and deletes, so no cross-job locking is needed.

    Attributes:
        store: Job table
        composer: Builds the PDF for a job
        publisher: Uploads finished PDFs
        min_images: Smallest accepted number of image references
        default_title: Cover title used when a submission has none
    """

    def __init__(
        self,
        store: JobStore,
        composer: DocumentComposer,
        publisher: ArtifactPublisher,
        storage_settings: DictConfig,
        max_workers: int = 4,
        min_images: int = 1,
        default_title: str = "My Coloring Book",
    ) -> None:
        self.store = store
        self.composer = composer
        self.publisher = publisher
        self.storage_settings = storage_settings
        self.min_images = max(1, min_images)
        self.default_title = default_title
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pdf-job")
        self._futures: Dict[str, Future] = {}
        self._cancel_events: Dict[str, threading.Event] = {}
        self._lock = threading.Lock()
        self._closed = False

    @classmethod
    def from_settings(
        cls,
        settings: DictConfig,
        storage: ObjectStorage,
        store: Optional[JobStore] = None,
        resolver: Optional[ImageResolver] = None,
    ) -> "JobManager":
        """
        Wire a manager from runtime settings.

        Args:
            settings: Full runtime settings (see configuration.make_settings)
            storage: Object storage used for image reads and PDF uploads
            store: Job table (default: in-memory)
            resolver: Image resolver (default: storage + requests)
        """
        resolver = resolver or ImageResolver(storage, http_timeout=float(settings.resolver.http_timeout))
        composer = DocumentComposer(resolver, Path(settings.paths.work_dir), settings.layout)
        publisher = ArtifactPublisher(storage, settings.storage)
        return cls(
            store=store or InMemoryJobStore(),
            composer=composer,
            publisher=publisher,
            storage_settings=settings.storage,
            max_workers=int(settings.jobs.max_workers),
            min_images=int(settings.jobs.min_images),
            default_title=settings.jobs.default_title,
        )

    def submit(
        self,
        image_refs: Sequence[str],
        title: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> JobSummary:
        """
        Validate a generation request, register the job and schedule it.

        Args:
            image_refs: Image references in page order
            title: Cover title (default title used when blank)
            owner_id: Submitting user, used for listing

        Returns:
            JobSummary of the registered job, already in processing state

        Raises:
            ValidationError: If there are too few references or one of them
                is malformed; no job is created
            JobStateError: If the manager has been shut down; no job is created
        """
        if not image_refs:
            raise ValidationError("No image URLs provided")
        if len(image_refs) < self.min_images:
            raise ValidationError(f"At least {self.min_images} images are required to create a coloring book")

        parsed_refs = []
        for position, raw in enumerate(image_refs, start=1):
            try:
                parsed_refs.append(parse_image_ref(raw, self.storage_settings))
            except ValidationError as exc:
                raise ValidationError(f"Image {position}: {exc}") from exc

        with self._lock:
            closed = self._closed
        if closed:
            raise JobStateError("Job queue is shut down; the job could not be scheduled")

        now = _utcnow()
        record = JobRecord(
            id=uuid4().hex,
            owner_id=owner_id,
            title=(title or "").strip() or self.default_title,
            image_refs=tuple(image_refs),
            parsed_refs=tuple(parsed_refs),
            status=JobStatus.PENDING,
            created_at=now,
            updated_at=now,
            events=[JobEvent(timestamp=now, message="Job registered and awaiting execution.")],
        )
        self.store.create(record)

        cancel_event = threading.Event()
        with self._lock:
            self._cancel_events[record.id] = cancel_event
        self._transition(record.id, JobStatus.PROCESSING, "Job queued for processing.")
        summary = self.store.get(record.id).to_summary()

        try:
            future = self._executor.submit(self._run_job, record.id, cancel_event)
        except RuntimeError as exc:
            # Shutdown raced the check above
            self._forget(record.id)
            self.store.delete(record.id)
            raise JobStateError("Job queue is shut down; the job could not be scheduled") from exc
        with self._lock:
            self._futures[record.id] = future
        future.add_done_callback(lambda _: self._forget(record.id))

        logger.info(f"Accepted PDF job {record.id} with {len(image_refs)} images")
        return summary

    def get_status(self, job_id: str) -> JobStatusResponse:
        """
        Raises:
            NotFoundError: If job_id is unknown
        """
        return self.store.get(job_id).to_status()

    def get_job(self, job_id: str) -> JobDetail:
        """
        Raises:
            NotFoundError: If job_id is unknown
        """
        return self.store.get(job_id).to_detail()

    def list_jobs(self, owner_id: Optional[str]) -> list[JobSummary]:
        """Summaries of an owner's jobs in submission order."""
        return [record.to_summary() for record in self.store.list_by_owner(owner_id)]

    def cancel(self, job_id: str) -> None:
        """
        Cancel a job that has not reached a terminal state.

        The job record is removed immediately. A worker already running the
        job stops at its next page boundary. A PDF it already uploaded is
        deleted from storage again. In-flight network calls are not
        interrupted.

        Raises:
            NotFoundError: If job_id is unknown
            JobStateError: If the job already completed or failed
        """
        # A worker that finishes after this point finds no record and
        # retracts its upload
        self.store.delete(job_id, unless_terminal=True)

        with self._lock:
            cancel_event = self._cancel_events.get(job_id)
            future = self._futures.get(job_id)
        if cancel_event is not None:
            cancel_event.set()
        if future is not None and future.cancel():
            logger.info(f"Job {job_id} cancelled before it started")
        logger.info(f"Job {job_id} cancelled")

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and optionally wait for running jobs."""
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def _forget(self, job_id: str) -> None:
        with self._lock:
            self._futures.pop(job_id, None)
            self._cancel_events.pop(job_id, None)

    def _append_event(self, job_id: str, message: str) -> None:
        event = JobEvent(timestamp=_utcnow(), message=message)
        record = self.store.get(job_id)
        self.store.update(job_id, events=[*record.events, event], updated_at=event.timestamp)

    def _transition(self, job_id: str, status: JobStatus, message: str, **changes) -> None:
        """
        Move a job to a new status; terminal jobs are never modified again.
        """
        record = self.store.get(job_id)
        if record.status.is_terminal:
            logger.warning(f"Ignoring {status.value} transition for job {job_id}: already {record.status.value}")
            return
        event = JobEvent(timestamp=_utcnow(), message=message)
        self.store.update(
            job_id,
            status=status,
            events=[*record.events, event],
            updated_at=event.timestamp,
            **changes,
        )

    def _run_job(self, job_id: str, cancel_event: threading.Event) -> None:
        """
        Compose and publish the PDF for a job (runs in a worker thread).

        Every exception is caught here and recorded on the job, so a failing
        job never takes the worker pool down with it.
        """
        try:
            self._process(job_id, cancel_event)
        except JobCancelledError:
            logger.info(f"Job {job_id} stopped after cancellation")
        except NotFoundError:
            # Record deleted by cancel() between two steps
            logger.info(f"Job {job_id} disappeared while processing; treating as cancelled")
        except Exception as exc:
            message = str(exc) or GENERIC_FAILURE_MESSAGE
            logger.error(f"PDF generation failed for job {job_id}: {message}")
            if cancel_event.is_set():
                return
            try:
                self._transition(job_id, JobStatus.FAILED, f"PDF generation failed: {message}", error=message)
            except NotFoundError:
                logger.info(f"Job {job_id} was cancelled before its failure could be recorded")

    def _process(self, job_id: str, cancel_event: threading.Event) -> None:
        record = self.store.get(job_id)
        self._append_event(job_id, "PDF generation started.")

        document = self.composer.compose(record.parsed_refs, record.title, cancel_event)
        published = False
        try:
            for page in document.pages:
                if page.kind is PageKind.PLACEHOLDER:
                    self._append_event(
                        job_id,
                        f"Image {page.source_index + 1} replaced by a placeholder page: {page.detail}",
                    )
            if cancel_event.is_set():
                raise JobCancelledError(f"Job {job_id} cancelled before upload")

            locator = self.publisher.publish(document)
            published = True
        finally:
            if not published:
                self.publisher.discard(document)

        if cancel_event.is_set():
            self.publisher.retract(document)
            raise JobCancelledError(f"Job {job_id} cancelled during upload")

        try:
            self._transition(
                job_id,
                JobStatus.COMPLETED,
                "PDF generation completed.",
                result_locator=locator,
                page_count=document.page_count,
            )
        except NotFoundError:
            self.publisher.retract(document)
            raise JobCancelledError(f"Job {job_id} cancelled after upload") from None
        logger.info(f"PDF generation completed for job {job_id}")
