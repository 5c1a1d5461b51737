"""
Image reference classification.

Clients send image references as strings: either inline ``data:image/...``
URIs or http(s) URLs that usually point at objects in the processed-images
bucket. Each string is classified once, when a job is submitted, into one of
three variants so the resolver never has to sniff URLs again:

- InlineRef: base64 payload embedded in a data URI
- StorageRef: bucket/key pair parsed from a storage URL (the URL is kept for
  the HTTP fallback)
- RemoteRef: any other http(s) URL

Two URL shapes are understood for storage objects:

    Path-style (custom endpoint such as LocalStack):
        http://localstack:4566/<bucket>/<key>
    Virtual-hosted (AWS):
        https://<bucket>.s3.amazonaws.com/<key>
        https://<bucket>.s3.<region>.amazonaws.com/<key>
    Regional path-style (AWS):
        https://s3.<region>.amazonaws.com/<bucket>/<key>
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Tuple, Union
from urllib.parse import unquote, urlsplit

from omegaconf import DictConfig

from .errors import ValidationError

DATA_URI_PATTERN = re.compile(r"^data:(?P<content_type>image/[\w.+-]+)?(?P<params>(;[^,;]*)*),(?P<payload>.*)$", re.DOTALL)
AWS_HOST_SUFFIX = ".amazonaws.com"


@dataclass(frozen=True)
class InlineRef:
    content_type: str
    payload: str

    def describe(self) -> str:
        return f"inline {self.content_type} ({len(self.payload)} chars)"


@dataclass(frozen=True)
class StorageRef:
    bucket: str
    key: str
    url: str

    def describe(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


@dataclass(frozen=True)
class RemoteRef:
    url: str

    def describe(self) -> str:
        return self.url


ImageRef = Union[InlineRef, StorageRef, RemoteRef]


def _parse_data_uri(raw: str) -> InlineRef:
    match = DATA_URI_PATTERN.match(raw)
    if not match or not match.group("content_type"):
        raise ValidationError("Inline image must be a data:image/... URI")
    if ";base64" not in match.group("params"):
        raise ValidationError("Inline image data must be base64 encoded")
    return InlineRef(content_type=match.group("content_type"), payload=match.group("payload"))


def _split_path(path: str) -> Tuple[str, str]:
    parts = path.split("/")
    # parts[0] is the empty string before the leading slash
    bucket = parts[1] if len(parts) > 1 else ""
    key = "/".join(parts[2:])
    return bucket, unquote(key)


def parse_storage_location(url: str, path_style: bool) -> Optional[Tuple[str, str]]:
    """
    Extract the (bucket, key) pair a storage URL points at.

    Args:
        url: Absolute http(s) URL
        path_style: True when a custom storage endpoint is configured; every
            URL is then read as ``/<bucket>/<key>``

    Returns:
        (bucket, key) or None when the URL does not name a storage object
    """
    parts = urlsplit(url)
    host = (parts.hostname or "").lower()

    if path_style:
        bucket, key = _split_path(parts.path)
    elif host.endswith(AWS_HOST_SUFFIX):
        labels = host.split(".")
        if labels[0] == "s3" or labels[0].startswith("s3-"):
            bucket, key = _split_path(parts.path)
        elif len(labels) > 2 and (labels[1] == "s3" or labels[1].startswith("s3-")):
            bucket = labels[0]
            key = unquote(parts.path.lstrip("/"))
        else:
            return None
    else:
        return None

    if not bucket or not key:
        return None
    return bucket, key


def parse_image_ref(raw: str, storage_settings: DictConfig) -> ImageRef:
    """
    Classify a client-supplied image reference.

    Raises:
        ValidationError: If the reference is neither a data URI nor an
            http(s) URL
    """
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("Image reference must be a non-empty string")
    raw = raw.strip()

    if raw.startswith("data:"):
        return _parse_data_uri(raw)

    scheme = urlsplit(raw).scheme.lower()
    if scheme not in {"http", "https"} or not urlsplit(raw).netloc:
        raise ValidationError(f"Unsupported image reference: {raw[:80]}")

    location = parse_storage_location(raw, path_style=bool(storage_settings.endpoint_url))
    if location is None:
        return RemoteRef(url=raw)
    bucket, key = location
    return StorageRef(bucket=bucket, key=key, url=raw)
