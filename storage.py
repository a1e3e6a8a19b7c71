"""
storage.py — S3-compatible object storage layer for transfers.

Objects are never proxied through this process on upload: clients PUT
directly to the bucket using presigned URLs. Reads for archive assembly
stream straight from get_object.
"""

import logging
from enum import Enum
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

import config
from exceptions import NotFound, ProviderFailure

logger = logging.getLogger(__name__)

MISSING_KEY_CODES = ("NoSuchKey", "404", "NotFound")


class GrantOperation(str, Enum):
    READ = "read"
    WRITE = "write"


def _get_s3_client():
    return boto3.client(
        "s3",
        endpoint_url=config.S3_ENDPOINT,
        aws_access_key_id=config.S3_ACCESS_KEY,
        aws_secret_access_key=config.S3_SECRET_KEY,
        config=Config(
            signature_version="s3v4",
            connect_timeout=5,
            read_timeout=30,
            retries={"max_attempts": 3, "mode": "standard"},
        ),
        region_name=config.S3_REGION,
    )


class StorageBackend:

    def __init__(self, s3_client=None, bucket: Optional[str] = None):
        self._s3 = s3_client or _get_s3_client()
        self.bucket = bucket or config.S3_BUCKET

    def issue_grant(
        self,
        key: str,
        operation: GrantOperation,
        expires_in: int,
        content_type: Optional[str] = None,
        download_name: Optional[str] = None,
    ) -> str:
        """
        Presign one operation on one object. Most S3 implementations accept
        the URL any number of times until it expires.
        """
        params = {"Bucket": self.bucket, "Key": key}
        if operation == GrantOperation.WRITE:
            client_method = "put_object"
            if content_type:
                params["ContentType"] = content_type
        else:
            client_method = "get_object"
            if download_name:
                params["ResponseContentDisposition"] = f'attachment; filename="{download_name}"'

        try:
            return self._s3.generate_presigned_url(
                ClientMethod=client_method,
                Params=params,
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Presign {operation.value} failed for {key}: {e}")
            raise ProviderFailure("object-store", str(e)) from e

    def open_read_stream(self, key: str):
        """Return the streaming body of an object. Caller must close it."""
        try:
            response = self._s3.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in MISSING_KEY_CODES:
                raise NotFound(f"Object not found: {key}") from e
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            logger.error(f"S3 GET failed for {key}: {e}")
            raise ProviderFailure("object-store", str(e), status=status) from e
        except BotoCoreError as e:
            logger.error(f"S3 GET error for {key}: {e}")
            raise ProviderFailure("object-store", str(e)) from e
        return response["Body"]

    def get_health(self) -> dict:
        try:
            self._s3.head_bucket(Bucket=self.bucket)
            return {"status": "healthy", "bucket": self.bucket, "endpoint": config.S3_ENDPOINT}
        except Exception as e:
            return {"status": "degraded", "bucket": self.bucket, "error": str(e)}
