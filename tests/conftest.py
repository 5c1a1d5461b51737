"""
Pytest configuration and fixtures for Coloring Book Backend tests.
"""

import base64
import io
import os
import shutil
import struct
import tempfile
import threading
import time
import zlib

import pytest
import requests
from fastapi.testclient import TestClient
from PIL import Image

# Set test environment variables before importing the app
os.environ["PDF_WORK_DIR"] = tempfile.mkdtemp(prefix="coloringbook_test_work_")
os.environ["AWS_ENDPOINT"] = "http://localstack:4566"
os.environ["AWS_REGION"] = "us-east-1"
os.environ["S3_ENSURE_BUCKETS"] = "false"

from coloringbook_backend.configuration import make_settings
from coloringbook_backend.errors import StorageError
from coloringbook_backend.job_manager import JobManager
from coloringbook_backend.main import app, get_job_manager
from coloringbook_backend.resolver import ImageResolver

STORAGE_ENDPOINT = "http://localstack:4566"
PROCESSED_BUCKET = "coloringbook-processed"
FINAL_BUCKET = "coloringbook-final-pdfs"


def make_png(width=40, height=30, color=(0, 0, 0), mode="RGB"):
    """Encode a solid-colour image as PNG bytes."""
    if mode == "RGBA":
        image = Image.new("RGBA", (width, height), (*color, 128))
    else:
        image = Image.new(mode, (width, height), color if mode == "RGB" else 0)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def _png_chunk(chunk_type, body):
    crc = zlib.crc32(chunk_type + body) & 0xFFFFFFFF
    return struct.pack(">I", len(body)) + chunk_type + body + struct.pack(">I", crc)


def make_broken_png(width=16, height=16):
    """
    PNG whose pixel data is split over two IDAT chunks, the second with a
    mangled chunk type. Opening succeeds; decoding fails part way through.
    """
    rows = b"".join(
        b"\x00" + bytes((x * 7 + y * 13) % 256 for x in range(width * 3)) for y in range(height)
    )
    pixels = zlib.compress(rows)
    half = len(pixels) // 2
    return (
        b"\x89PNG\r\n\x1a\n"
        + _png_chunk(b"IHDR", struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0))
        + _png_chunk(b"IDAT", pixels[:half])
        + _png_chunk(b"F\xd3?&", pixels[half:])
        + _png_chunk(b"IEND", b"")
    )


def data_uri(data, content_type="image/png"):
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


def storage_url(key, bucket=PROCESSED_BUCKET):
    return f"{STORAGE_ENDPOINT}/{bucket}/{key}"


class FakeStorage:
    """In-memory ObjectStorage used in place of S3."""

    def __init__(self):
        self.objects = {}
        self.puts = []
        self.deletes = []
        self.fail_puts = False
        self.gets = []
        self.put_gate = None
        self.put_started = threading.Event()

    def get(self, bucket, key):
        self.gets.append((bucket, key))
        try:
            return self.objects[(bucket, key)]
        except KeyError:
            raise StorageError(f"NoSuchKey: s3://{bucket}/{key}", bucket, key) from None

    def put(self, bucket, key, data, content_type):
        self.put_started.set()
        if self.put_gate is not None:
            self.put_gate.wait(timeout=10)
        if self.fail_puts:
            raise StorageError(f"AccessDenied: s3://{bucket}/{key}", bucket, key)
        self.objects[(bucket, key)] = data
        self.puts.append((bucket, key, content_type))
        return self.object_url(bucket, key)

    def delete(self, bucket, key):
        self.deletes.append((bucket, key))
        self.objects.pop((bucket, key), None)

    def object_url(self, bucket, key):
        return f"{STORAGE_ENDPOINT}/{bucket}/{key}"

    def read_url(self, url):
        bucket, key = url[len(STORAGE_ENDPOINT) + 1:].split("/", 1)
        return self.objects[(bucket, key)]


class FakeResponse:
    def __init__(self, content, status_code=200, content_type="image/png"):
        self.content = content
        self.status_code = status_code
        self.headers = {"Content-Type": content_type}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeSession:
    """Stands in for requests.Session; unknown URLs fail like an unreachable host."""

    def __init__(self):
        self.responses = {}
        self.gates = {}
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        gate = self.gates.get(url)
        if gate is not None:
            gate.wait(timeout=10)
        if url not in self.responses:
            raise requests.ConnectionError(f"Failed to establish a new connection: {url}")
        return self.responses[url]


@pytest.fixture(scope="session", autouse=True)
def work_root():
    """Remove the shared work directory after the test session."""
    yield os.environ["PDF_WORK_DIR"]
    shutil.rmtree(os.environ["PDF_WORK_DIR"], ignore_errors=True)


@pytest.fixture
def work_dir(tmp_path):
    return tmp_path / "work"


@pytest.fixture
def settings(work_dir):
    return make_settings(
        {
            "paths.work_dir": str(work_dir),
            "storage.endpoint_url": STORAGE_ENDPOINT,
            "jobs.max_workers": 2,
        },
        use_env=False,
    )


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def http_session():
    return FakeSession()


@pytest.fixture
def resolver(storage, http_session):
    return ImageResolver(storage, http_timeout=10.0, session=http_session)


@pytest.fixture
def manager(settings, storage, resolver):
    job_manager = JobManager.from_settings(settings, storage, resolver=resolver)
    yield job_manager
    job_manager.shutdown(wait=True)


@pytest.fixture
def wait_for_job(manager):
    """Poll a job until it reaches a terminal state."""

    def _wait(job_id, timeout=15.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            job_status = manager.get_status(job_id)
            if job_status.status.is_terminal:
                return job_status
            time.sleep(0.05)
        raise AssertionError(f"Job {job_id} did not finish within {timeout}s")

    return _wait


@pytest.fixture
def client(manager):
    """Create a test client whose routes use the fake-backed job manager."""
    app.dependency_overrides[get_job_manager] = lambda: manager
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def gate():
    """Event used to hold a FakeSession request until the test releases it."""
    event = threading.Event()
    yield event
    event.set()
