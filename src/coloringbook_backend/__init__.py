"""
Coloring Book Backend - REST API for coloring book PDF generation

This package provides a FastAPI-based web service that turns an ordered list
of processed coloring-page images into a printable PDF. It enables:

- Submission of PDF generation jobs from image references
- Image resolution from inline data URIs, object storage or plain HTTP
- Page composition with a cover sheet, page numbers and placeholder pages
- Publication of the finished PDF to S3-compatible object storage
- Asynchronous job status tracking and cancellation

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - job_manager: Job lifecycle and background execution coordinator
    - job_store: Swappable job table (in-memory implementation)
    - image_refs: Classification of image references at submission time
    - resolver: Turns image references into image bytes
    - composer: Lays images out onto letter-sized PDF pages
    - publisher: Uploads finished documents to object storage
    - storage: boto3-backed object storage adapter
    - configuration: Config loading and merging logic
    - models: Pydantic models for request/response validation

Usage:
    Run the API server with:
        uvicorn coloringbook_backend.main:app --reload --host 0.0.0.0 --port 8000

    Or use the development script:
        uv run uvicorn coloringbook_backend.main:app --reload
"""

__version__ = "0.1.0"
