"""
Object storage adapter for image reads and finished PDF uploads.

This module provides functionality for:
- Reading processed images from S3 (or LocalStack in development)
- Uploading finished PDFs and building their public URLs
- Creating the buckets the service relies on

When a custom endpoint is configured (``AWS_ENDPOINT``), the client uses
path-style addressing as LocalStack requires, and object URLs take the form
``{endpoint}/{bucket}/{key}``. Otherwise URLs are virtual-hosted AWS URLs.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from omegaconf import DictConfig

from .errors import StorageError

logger = logging.getLogger(__name__)

CORS_RULES = [
    {
        "AllowedHeaders": ["*"],
        "AllowedMethods": ["GET", "PUT", "POST", "DELETE", "HEAD"],
        "AllowedOrigins": ["*"],
        "ExposeHeaders": ["ETag"],
    }
]


class ObjectStorage(Protocol):
    """Narrow storage interface consumed by the resolver and publisher."""

    def get(self, bucket: str, key: str) -> bytes: ...

    def put(self, bucket: str, key: str, data: bytes, content_type: str) -> str: ...

    def delete(self, bucket: str, key: str) -> None: ...

    def object_url(self, bucket: str, key: str) -> str: ...


class S3Storage:
    """
    boto3-backed implementation of ObjectStorage.

    The client is created lazily so importing the API module never needs
    credentials; credential problems surface on the first real request.
    """

    def __init__(self, settings: DictConfig, client=None) -> None:
        self.endpoint_url: Optional[str] = settings.endpoint_url or None
        self.region: str = settings.region
        self._client = client

    def _get_client(self):
        if self._client is None:
            config = Config(s3={"addressing_style": "path"}) if self.endpoint_url else None
            self._client = boto3.client(
                "s3",
                region_name=self.region,
                endpoint_url=self.endpoint_url,
                config=config,
            )
        return self._client

    def object_url(self, bucket: str, key: str) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{bucket}/{key}"
        return f"https://{bucket}.s3.amazonaws.com/{key}"

    def get(self, bucket: str, key: str) -> bytes:
        try:
            response = self._get_client().get_object(Bucket=bucket, Key=key)
            body = response["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"S3 read failed for s3://{bucket}/{key}: {exc}")
            raise StorageError(f"Could not read s3://{bucket}/{key}: {exc}", bucket, key) from exc
        if not body:
            raise StorageError(f"S3 object s3://{bucket}/{key} is empty", bucket, key)
        logger.info(f"Read {len(body)} bytes from s3://{bucket}/{key}")
        return body

    def put(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        try:
            logger.info(f"Uploading {len(data)} bytes to s3://{bucket}/{key}")
            self._get_client().put_object(Bucket=bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"S3 upload failed for s3://{bucket}/{key}: {exc}")
            raise StorageError(f"Could not write s3://{bucket}/{key}: {exc}", bucket, key) from exc
        url = self.object_url(bucket, key)
        logger.info(f"Upload successful: {url}")
        return url

    def delete(self, bucket: str, key: str) -> None:
        try:
            self._get_client().delete_object(Bucket=bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Could not delete s3://{bucket}/{key}: {exc}", bucket, key) from exc
        logger.info(f"Deleted s3://{bucket}/{key}")

    def ensure_buckets(self, buckets: Iterable[str]) -> None:
        """
        Create any missing bucket and give it a permissive CORS rule.

        Errors for one bucket are logged and do not prevent the others from
        being checked; the service can still start against a partially
        provisioned account.
        """
        client = self._get_client()
        for bucket in buckets:
            try:
                client.head_bucket(Bucket=bucket)
                logger.info(f"Bucket {bucket} already exists")
                continue
            except ClientError as exc:
                code = str(exc.response.get("Error", {}).get("Code", ""))
                if code not in {"404", "NoSuchBucket", "NotFound"}:
                    logger.error(f"Error checking bucket {bucket}: {exc}")
                    continue
            except BotoCoreError as exc:
                logger.error(f"Error checking bucket {bucket}: {exc}")
                continue

            try:
                if self.region == "us-east-1":
                    client.create_bucket(Bucket=bucket)
                else:
                    client.create_bucket(
                        Bucket=bucket,
                        CreateBucketConfiguration={"LocationConstraint": self.region},
                    )
                logger.info(f"Bucket {bucket} created")
                client.put_bucket_cors(Bucket=bucket, CORSConfiguration={"CORSRules": CORS_RULES})
                logger.info(f"CORS configuration set for bucket {bucket}")
            except (BotoCoreError, ClientError) as exc:
                logger.error(f"Error creating bucket {bucket}: {exc}")


def required_buckets(settings: DictConfig) -> list[str]:
    return [settings.upload_bucket, settings.processed_bucket, settings.final_bucket]
