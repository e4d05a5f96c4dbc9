"""Utility helpers for publishing assets to S3-compatible storage."""

from __future__ import annotations

from typing import Optional

import boto3
from botocore.config import Config
from loguru import logger

from watermark_relay.core.config import Settings


class S3Uploader:
    """Put objects into S3-compatible storage and issue presigned GET URLs."""

    def __init__(self, settings: Settings, client: object | None = None) -> None:
        if not settings.S3_BUCKET:
            logger.warning("S3 bucket not configured; uploads require explicit bucket.")

        if client is None:
            session_kwargs: dict[str, object] = {}
            if settings.S3_ENDPOINT:
                session_kwargs["endpoint_url"] = settings.S3_ENDPOINT
            if settings.S3_REGION:
                session_kwargs["region_name"] = settings.S3_REGION
            if settings.S3_ACCESS_KEY_ID and settings.S3_SECRET_ACCESS_KEY:
                session_kwargs["aws_access_key_id"] = settings.S3_ACCESS_KEY_ID
                session_kwargs["aws_secret_access_key"] = settings.S3_SECRET_ACCESS_KEY

            addressing_style = "path" if settings.S3_FORCE_PATH_STYLE else "auto"
            session_kwargs["config"] = Config(s3={"addressing_style": addressing_style})
            client = boto3.client("s3", **session_kwargs)

        self._client = client
        self._default_bucket = settings.S3_BUCKET
        self._presign_ttl = settings.S3_PRESIGN_TTL_SECONDS

    def put_bytes(
        self,
        data: bytes,
        key: str,
        content_type: Optional[str] = None,
        bucket: Optional[str] = None,
    ) -> None:
        target_bucket = bucket or self._default_bucket
        if not target_bucket:
            raise ValueError("S3 bucket must be provided to upload files.")

        extra_args = {"ContentType": content_type} if content_type else {}
        logger.info("Uploading {} bytes to s3://{}/{}", len(data), target_bucket, key)
        self._client.put_object(Bucket=target_bucket, Key=key, Body=data, **extra_args)

    def generate_presigned_url(
        self,
        key: str,
        expires_in: Optional[int] = None,
        bucket: Optional[str] = None,
    ) -> str:
        ttl = expires_in or self._presign_ttl
        target_bucket = bucket or self._default_bucket
        if not target_bucket:
            raise ValueError("S3 bucket must be provided to generate presigned URLs.")

        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": target_bucket, "Key": key},
            ExpiresIn=ttl,
        )

    def store_bytes_and_get_url(
        self,
        data: bytes,
        key_prefix: str,
        filename: str,
        content_type: Optional[str] = None,
        bucket: Optional[str] = None,
        expires_in: Optional[int] = None,
    ) -> str:
        key = f"{key_prefix.rstrip('/')}/{filename}"
        self.put_bytes(data, key, content_type=content_type, bucket=bucket)
        return self.generate_presigned_url(key, expires_in=expires_in, bucket=bucket)
