"""
Attachment retrieval from object storage.

Rendered invoice documents (PDF, optional XML) are stored in an S3-compatible
bucket and referenced from the invoice row. References may be a public/CDN
URL, an endpoint URL that includes the bucket, or a bare object key.
"""

import logging
from typing import Optional
from urllib.parse import urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from services.errors import AttachmentNotFoundError, StorageError

logger = logging.getLogger(__name__)

# No retries: failures are surfaced once and retried by reissuing the request
s3_config = Config(
    retries={
        'max_attempts': 1,
        'mode': 'standard'
    },
    connect_timeout=10,
    read_timeout=60
)


def build_s3_client(settings):
    """Create an S3 client; custom endpoints (e.g. R2) use path-style addressing."""
    kwargs = {
        "region_name": settings.S3_REGION or None,
        "config": s3_config,
    }
    if settings.S3_ACCESS_KEY and settings.S3_SECRET_KEY:
        kwargs["aws_access_key_id"] = settings.S3_ACCESS_KEY
        kwargs["aws_secret_access_key"] = settings.S3_SECRET_KEY
    if settings.S3_ENDPOINT:
        kwargs["endpoint_url"] = settings.S3_ENDPOINT
        kwargs["config"] = s3_config.merge(Config(s3={"addressing_style": "path"}))
    return boto3.client("s3", **kwargs)


def extract_key(reference: str, bucket: str, public_url: Optional[str] = None) -> str:
    """
    Resolve a stored document reference to an object key.

    >>> extract_key("https://cdn.example.com/app/invoices/u1/i1/R-1.pdf", "docs", "https://cdn.example.com")
    'app/invoices/u1/i1/R-1.pdf'
    >>> extract_key("https://r2.example.com/docs/invoices/R-1.pdf", "docs")
    'invoices/R-1.pdf'
    >>> extract_key("invoices/R-1.pdf", "docs")
    'invoices/R-1.pdf'
    """
    parsed = urlparse(reference)
    if not parsed.scheme or not parsed.netloc:
        return reference.lstrip("/")

    parts = [p for p in parsed.path.split("/") if p]

    if public_url and urlparse(public_url).netloc == parsed.netloc:
        return "/".join(parts)

    if parts and parts[0] == bucket:
        return "/".join(parts[1:])

    return "/".join(parts)


class AttachmentRetriever:
    """
    Fetches stored documents by reference.

    Raises AttachmentNotFoundError when the object does not exist and
    StorageError for any other failure.
    """

    def __init__(self, s3_client, bucket: str, public_url: Optional[str] = None):
        self.s3_client = s3_client
        self.bucket = bucket
        self.public_url = public_url or None

    @classmethod
    def from_settings(cls, settings) -> "AttachmentRetriever":
        return cls(
            s3_client=build_s3_client(settings),
            bucket=settings.S3_BUCKET_NAME,
            public_url=settings.S3_PUBLIC_URL,
        )

    def fetch(self, reference: str) -> bytes:
        if not reference:
            raise AttachmentNotFoundError("No document reference", operation="fetch_attachment")
        if not self.bucket:
            raise StorageError("S3_BUCKET_NAME is not configured", operation="fetch_attachment", identifier=reference)

        key = extract_key(reference, self.bucket, self.public_url)

        try:
            response = self.s3_client.get_object(Bucket=self.bucket, Key=key)
            content = response['Body'].read()
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', '')
            if error_code in ('NoSuchKey', '404', 'NotFound'):
                logger.error(f"S3 object not found: s3://{self.bucket}/{key}")
                raise AttachmentNotFoundError(
                    f"Document not found in storage: {key}",
                    operation="fetch_attachment",
                    identifier=key
                ) from e
            logger.error(f"Failed to fetch from S3 s3://{self.bucket}/{key}: {e}")
            raise StorageError(
                f"Failed to fetch document: {error_code or e}",
                operation="fetch_attachment",
                identifier=key
            ) from e
        except BotoCoreError as e:
            logger.error(f"Failed to fetch from S3 s3://{self.bucket}/{key}: {e}")
            raise StorageError(
                f"Failed to fetch document: {e}",
                operation="fetch_attachment",
                identifier=key
            ) from e

        logger.info(f"Fetched s3://{self.bucket}/{key} ({len(content)} bytes)")
        return content
