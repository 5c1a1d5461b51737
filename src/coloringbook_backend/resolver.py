"""
Image resolution: turn classified image references into image bytes.

Inline references are decoded directly. Storage references are read from
object storage first; if that read fails for any storage reason the same URL
is fetched over plain HTTP with a bounded timeout, since storage URLs handed
out to the browser are not always reachable through the service's own
credentials (and vice versa). Remote references are fetched over HTTP only.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

import requests

from .errors import ResolutionError, StorageError
from .image_refs import ImageRef, InlineRef, RemoteRef, StorageRef
from .storage import ObjectStorage

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class ResolvedImage:
    data: bytes
    content_type: str


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of resolving one reference: exactly one of image/error is set."""

    index: int
    ref: ImageRef
    image: Optional[ResolvedImage] = None
    error: Optional[ResolutionError] = None

    @property
    def ok(self) -> bool:
        return self.image is not None


class ImageResolver:
    def __init__(
        self,
        storage: ObjectStorage,
        http_timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.storage = storage
        self.http_timeout = http_timeout
        self.session = session or requests.Session()

    def resolve(self, ref: ImageRef) -> ResolvedImage:
        """
        Return the bytes behind an image reference.

        Raises:
            ResolutionError: If no strategy produced any bytes
        """
        if isinstance(ref, InlineRef):
            return self._decode_inline(ref)
        if isinstance(ref, StorageRef):
            return self._read_storage(ref)
        if isinstance(ref, RemoteRef):
            return self._fetch_http(ref.url)
        raise ResolutionError(f"Unsupported image reference type: {type(ref).__name__}")

    def resolve_result(self, index: int, ref: ImageRef) -> ResolutionResult:
        """Resolve one reference, capturing a ResolutionError in the result."""
        try:
            return ResolutionResult(index=index, ref=ref, image=self.resolve(ref))
        except ResolutionError as exc:
            logger.warning(f"Image {index + 1} ({ref.describe()}) could not be resolved: {exc}")
            return ResolutionResult(index=index, ref=ref, error=exc)

    def resolve_all(self, refs: Iterable[ImageRef]) -> Iterator[ResolutionResult]:
        """Resolve references one at a time, in order, yielding a result per reference."""
        for index, ref in enumerate(refs):
            yield self.resolve_result(index, ref)

    def _decode_inline(self, ref: InlineRef) -> ResolvedImage:
        try:
            data = base64.b64decode(ref.payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ResolutionError(f"Malformed base64 image data: {exc}") from exc
        if not data:
            raise ResolutionError("Inline image data is empty")
        return ResolvedImage(data=data, content_type=ref.content_type)

    def _read_storage(self, ref: StorageRef) -> ResolvedImage:
        try:
            data = self.storage.get(ref.bucket, ref.key)
            return ResolvedImage(data=data, content_type=DEFAULT_CONTENT_TYPE)
        except StorageError as exc:
            logger.warning(f"Storage read failed for {ref.describe()}, falling back to HTTP: {exc}")
        try:
            return self._fetch_http(ref.url)
        except ResolutionError as exc:
            raise ResolutionError(f"Storage read and HTTP fallback both failed for {ref.url}: {exc}") from exc

    def _fetch_http(self, url: str) -> ResolvedImage:
        logger.info(f"Fetching image over HTTP: {url}")
        try:
            response = self.session.get(url, timeout=self.http_timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise ResolutionError(f"HTTP fetch failed: {exc}") from exc
        if not response.content:
            raise ResolutionError(f"HTTP fetch returned an empty body for {url}")
        content_type = response.headers.get("Content-Type", DEFAULT_CONTENT_TYPE)
        return ResolvedImage(data=response.content, content_type=content_type)
