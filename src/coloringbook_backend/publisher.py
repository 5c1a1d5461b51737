"""
Publication of finished coloring books to object storage.
"""

from __future__ import annotations

import logging

from omegaconf import DictConfig

from .composer import ComposedDocument
from .errors import PublishError, StorageError
from .storage import ObjectStorage
from .utils import remove_file

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"


class ArtifactPublisher:
    def __init__(self, storage: ObjectStorage, settings: DictConfig) -> None:
        self.storage = storage
        self.bucket: str = settings.final_bucket
        self.prefix: str = settings.final_prefix.strip("/")

    def key_for(self, document: ComposedDocument) -> str:
        return f"{self.prefix}/{document.document_id}.pdf" if self.prefix else f"{document.document_id}.pdf"

    def publish(self, document: ComposedDocument) -> str:
        """
        Upload a composed document and return its retrieval URL.

        The temporary PDF is removed whether or not the upload succeeds.

        Raises:
            PublishError: If the document could not be read or stored
        """
        key = self.key_for(document)
        try:
            data = document.path.read_bytes()
            logger.info(f"Uploading PDF to storage: {self.bucket}/{key}")
            locator = self.storage.put(self.bucket, key, data, PDF_CONTENT_TYPE)
        except (OSError, StorageError) as exc:
            raise PublishError(f"Failed to publish PDF: {exc}") from exc
        finally:
            remove_file(document.path)
        logger.info(f"PDF available at: {locator}")
        return locator

    def discard(self, document: ComposedDocument) -> None:
        """Drop a composed document without uploading it."""
        remove_file(document.path)

    def retract(self, document: ComposedDocument) -> None:
        """Best-effort removal of an already published document."""
        key = self.key_for(document)
        try:
            self.storage.delete(self.bucket, key)
        except StorageError as exc:
            logger.error(f"Could not retract published PDF {self.bucket}/{key}: {exc}")
