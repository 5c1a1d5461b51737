"""
Job table for PDF generation jobs.

The job manager talks to the table only through the JobStore interface, so
the in-memory implementation used here can be replaced by an external cache
or database without touching job orchestration.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Any, Dict, Optional, Protocol

from .errors import JobStateError, NotFoundError
from .image_refs import ImageRef
from .models import JobDetail, JobEvent, JobStatus, JobStatusResponse, JobSummary


@dataclass
class JobRecord:
    """
    Internal representation of a PDF generation job.

    Attributes:
        id: Unique job identifier (hex UUID)
        owner_id: Identifier of the submitting user, if known
        title: Cover title
        image_refs: Image references exactly as submitted, in page order
        parsed_refs: Classified references, same order as image_refs
        status: Current execution status
        created_at: Job creation timestamp (UTC)
        updated_at: Last modification timestamp (UTC)
        result_locator: URL of the finished PDF (completed jobs only)
        error: Error message (failed jobs only)
        page_count: Pages in the finished PDF (completed jobs only)
        events: Chronological list of job lifecycle events
    """

    id: str
    owner_id: Optional[str]
    title: str
    image_refs: tuple[str, ...]
    parsed_refs: tuple[ImageRef, ...]
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    result_locator: Optional[str] = None
    error: Optional[str] = None
    page_count: Optional[int] = None
    events: list[JobEvent] = field(default_factory=list)

    def to_summary(self) -> JobSummary:
        return JobSummary(
            job_id=self.id,
            owner_id=self.owner_id,
            title=self.title,
            status=self.status,
            image_count=len(self.image_refs),
            created_at=self.created_at,
            updated_at=self.updated_at,
            result_locator=self.result_locator,
        )

    def to_detail(self) -> JobDetail:
        summary = self.to_summary()
        return JobDetail(
            **summary.model_dump(),
            image_refs=list(self.image_refs),
            events=list(self.events),
            page_count=self.page_count,
            error_message=self.error,
        )

    def to_status(self) -> JobStatusResponse:
        return JobStatusResponse(
            job_id=self.id,
            status=self.status,
            result_locator=self.result_locator,
            error_message=self.error,
        )


class JobStore(Protocol):
    def create(self, record: JobRecord) -> None: ...

    def get(self, job_id: str) -> JobRecord: ...

    def update(self, job_id: str, **changes: Any) -> JobRecord: ...

    def delete(self, job_id: str, unless_terminal: bool = False) -> None: ...

    def list_by_owner(self, owner_id: Optional[str]) -> list[JobRecord]: ...


class InMemoryJobStore:
    """
    Process-local JobStore backed by a dict.

    Thread Safety:
        Every operation holds the lock; records handed out are copies, so
        callers never observe a record while another thread mutates it.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, JobRecord] = {}
        self._lock = Lock()

    def create(self, record: JobRecord) -> None:
        with self._lock:
            if record.id in self._jobs:
                raise ValueError(f"Job {record.id} already exists")
            self._jobs[record.id] = copy.deepcopy(record)

    def get(self, job_id: str) -> JobRecord:
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                raise NotFoundError(f"Job {job_id} not found")
            return copy.deepcopy(record)

    def update(self, job_id: str, **changes: Any) -> JobRecord:
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                raise NotFoundError(f"Job {job_id} not found")
            for key, value in changes.items():
                if not hasattr(record, key):
                    raise AttributeError(f"JobRecord has no field {key!r}")
                setattr(record, key, value)
            return copy.deepcopy(record)

    def delete(self, job_id: str, unless_terminal: bool = False) -> None:
        """
        Remove a record.

        With unless_terminal, completed and failed records are kept and
        JobStateError is raised; the check and the removal happen under one
        lock acquisition.
        """
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                raise NotFoundError(f"Job {job_id} not found")
            if unless_terminal and record.status.is_terminal:
                raise JobStateError(f"Job {job_id} is already {record.status.value}")
            del self._jobs[job_id]

    def list_by_owner(self, owner_id: Optional[str]) -> list[JobRecord]:
        with self._lock:
            return [copy.deepcopy(record) for record in self._jobs.values() if record.owner_id == owner_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
