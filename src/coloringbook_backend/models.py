from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobEvent(BaseModel):
    timestamp: datetime
    message: str


class JobSummary(BaseModel):
    job_id: str
    owner_id: Optional[str] = None
    title: str
    status: JobStatus
    image_count: int
    created_at: datetime
    updated_at: datetime
    result_locator: Optional[str] = None


class JobDetail(JobSummary):
    image_refs: List[str]
    events: List[JobEvent]
    page_count: Optional[int] = None
    error_message: Optional[str] = None


class JobStatusResponse(BaseModel):
    job_id: str
    status: JobStatus
    result_locator: Optional[str] = None
    error_message: Optional[str] = None


class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_urls: List[str] = Field(default_factory=list, alias="imageUrls")
    title: Optional[str] = None


class GenerateResponse(BaseModel):
    message: str
    job_id: str
    status: JobStatus
