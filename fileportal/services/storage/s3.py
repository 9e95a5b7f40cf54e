import asyncio
import logging
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .base import BaseStorage, DEFAULT_PAGE_SIZE, ObjectPage, StoredObject
from fileportal.core.config import settings
from fileportal.core.exceptions import StorageError

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def _describe(error: Exception) -> str:
    # Never echo the raw exception: it may carry endpoint URLs or request signatures
    if isinstance(error, ClientError):
        return _error_code(error) or "ClientError"
    return type(error).__name__


class S3Storage(BaseStorage):
    def __init__(self, s3_client=None, bucket: Optional[str] = None):
        self.bucket = bucket or settings.S3_BUCKET_NAME
        self.s3_client = s3_client or boto3.client(
            's3',
            aws_access_key_id=settings.S3_ACCESS_KEY,
            aws_secret_access_key=settings.S3_SECRET_KEY,
            endpoint_url=settings.S3_ENDPOINT_URL or None,
            region_name=settings.S3_REGION_NAME,
            config=Config(s3={"addressing_style": "path"}),
        )

    def get_backend_name(self) -> str:
        return "s3"

    async def put_object(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        await asyncio.to_thread(self._put_object, key, data, content_type)

    def _put_object(self, key, data, content_type):
        try:
            self.s3_client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
            logger.debug(f"Object stored: {key} ({len(data)} bytes)")
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 put failed for {key}: {_describe(e)}")
            raise StorageError("put", key, _describe(e)) from e

    async def get_object(self, key: str) -> Optional[bytes]:
        return await asyncio.to_thread(self._get_object, key)

    def _get_object(self, key):
        try:
            response = self.s3_client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            raise StorageError("get", key, _describe(e)) from e
        except BotoCoreError as e:
            raise StorageError("get", key, _describe(e)) from e

    async def delete_object(self, key: str) -> None:
        await asyncio.to_thread(self._delete_object, key)

    def _delete_object(self, key):
        try:
            self.s3_client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 delete failed for {key}: {_describe(e)}")
            raise StorageError("delete", key, _describe(e)) from e

    async def object_exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._object_exists, key)

    def _object_exists(self, key):
        try:
            self.s3_client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return False
            raise StorageError("head", key, _describe(e)) from e
        except BotoCoreError as e:
            raise StorageError("head", key, _describe(e)) from e

    async def list_objects(
        self, prefix: str = "", continuation_token: Optional[str] = None, page_size: int = DEFAULT_PAGE_SIZE
    ) -> ObjectPage:
        return await asyncio.to_thread(self._list_objects, prefix, continuation_token, page_size)

    def _list_objects(self, prefix, continuation_token, page_size):
        params = {"Bucket": self.bucket, "Prefix": prefix, "MaxKeys": page_size}
        if continuation_token:
            params["ContinuationToken"] = continuation_token
        try:
            response = self.s3_client.list_objects_v2(**params)
        except (BotoCoreError, ClientError) as e:
            raise StorageError("list", prefix or None, _describe(e)) from e
        objects = [
            StoredObject(key=obj["Key"], size=obj["Size"], last_modified=obj.get("LastModified"))
            for obj in response.get("Contents", [])
        ]
        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return ObjectPage(objects=objects, next_token=next_token)

    async def signed_url(self, key: str, ttl_seconds: int, direction: str = "download") -> str:
        operation = "get_object" if direction == "download" else "put_object"
        try:
            return await asyncio.to_thread(
                self.s3_client.generate_presigned_url,
                operation,
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=ttl_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError("sign", key, _describe(e)) from e
