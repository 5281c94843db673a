"""S3-backed content-addressed object store."""

from __future__ import annotations

from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from shipstack.services.assets import ObjectLocator, StoreError

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


class S3ObjectStore:
    """``RemoteObjectStore`` over one S3 bucket.

    Keys are content hashes, so an existing key is never overwritten.
    """

    def __init__(
        self,
        bucket: str,
        *,
        region: str | None = None,
        endpoint_url: str | None = None,
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.region = region
        if client is None:
            client_kwargs: dict[str, Any] = {
                "service_name": "s3",
                "config": Config(signature_version="s3v4", retries={"mode": "standard"}),
            }
            if region:
                client_kwargs["region_name"] = region
            if endpoint_url:
                client_kwargs["endpoint_url"] = endpoint_url
            try:
                client = boto3.client(**client_kwargs)
            except BotoCoreError as e:
                raise StoreError(f"cannot create S3 client for {bucket}: {e}") from e
        self.client = client

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return False
            raise StoreError(f"s3://{self.bucket}/{key}: {e}") from e
        except BotoCoreError as e:
            raise StoreError(f"s3://{self.bucket}/{key}: {e}") from e
        return True

    def put_object_if_absent(self, key: str, data: bytes) -> ObjectLocator:
        locator = ObjectLocator(bucket=self.bucket, key=key)
        if self.exists(key):
            return locator
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data)
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"{locator.s3_uri}: {e}") from e
        return locator
