from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .configuration import make_settings
from .errors import JobStateError, NotFoundError, ValidationError
from .job_manager import JobManager
from .models import GenerateRequest, GenerateResponse, JobDetail, JobStatusResponse, JobSummary
from .storage import S3Storage, required_buckets

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = make_settings()
storage = S3Storage(settings.storage)
job_manager = JobManager.from_settings(settings, storage)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.storage.ensure_buckets:
        logger.info("Checking if required S3 buckets exist...")
        storage.ensure_buckets(required_buckets(settings.storage))
    yield
    job_manager.shutdown(wait=False)


app = FastAPI(title="Coloring Book API", version="0.1.0", lifespan=lifespan)

allowed_origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_job_manager() -> JobManager:
    return job_manager


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/pdf/generate", response_model=GenerateResponse, status_code=status.HTTP_202_ACCEPTED)
def generate_pdf(
    request: GenerateRequest,
    x_user_id: Optional[str] = Header(default=None),
    manager: JobManager = Depends(get_job_manager),
) -> GenerateResponse:
    try:
        summary = manager.submit(request.image_urls, title=request.title, owner_id=x_user_id)
    except ValidationError as exc:  # noqa: BLE001
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except JobStateError as exc:  # noqa: BLE001
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return GenerateResponse(message="PDF generation started", job_id=summary.job_id, status=summary.status)


@app.get("/pdf/status/{job_id}", response_model=JobStatusResponse, response_model_exclude_none=True)
def pdf_status(job_id: str, manager: JobManager = Depends(get_job_manager)) -> JobStatusResponse:
    try:
        return manager.get_status(job_id)
    except NotFoundError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="PDF job not found") from exc


@app.get("/pdf/jobs/{job_id}", response_model=JobDetail)
def pdf_job(job_id: str, manager: JobManager = Depends(get_job_manager)) -> JobDetail:
    try:
        return manager.get_job(job_id)
    except NotFoundError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="PDF job not found") from exc


@app.delete("/pdf/jobs/{job_id}")
def cancel_pdf_job(job_id: str, manager: JobManager = Depends(get_job_manager)) -> Dict[str, str]:
    try:
        manager.cancel(job_id)
    except NotFoundError as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="PDF job not found") from exc
    except JobStateError as exc:  # noqa: BLE001
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"status": "cancelled"}


@app.get("/pdf/list", response_model=list[JobSummary])
def list_user_pdfs(
    x_user_id: Optional[str] = Header(default=None),
    manager: JobManager = Depends(get_job_manager),
) -> list[JobSummary]:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return manager.list_jobs(x_user_id)
