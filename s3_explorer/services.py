from __future__ import annotations
"""Business logic for listing, searching and editing buckets and objects."""
import base64
import binascii
from concurrent.futures import ThreadPoolExecutor
import logging
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from .clients import ClientFactory, is_localstack_endpoint, normalize_region
from .errors import ValidationError
from .models import BucketInfo, ConnectionDescriptor, FolderInfo, ObjectDetails, SearchMode

LOGGER = logging.getLogger(__name__)

SEARCH_MATCH_LIMIT = 1000
BUCKET_INFO_MAX_KEYS = 1000


def strip_metadata(response: dict) -> dict:
    return {key: value for key, value in response.items() if key != "ResponseMetadata"}


def folder_key(folder: str) -> str:
    return folder if folder.endswith("/") else f"{folder}/"


def _latest(current, candidate):
    if candidate is None:
        return current
    if current is None or candidate > current:
        return candidate
    return current


class S3ExplorerService:
    """Stateless S3 operations; every call receives its connection explicitly."""

    def __init__(self, client_factory: ClientFactory | None = None):
        self._clients = client_factory or ClientFactory()

    @property
    def clients(self) -> ClientFactory:
        return self._clients

    def list_buckets(self, descriptor: ConnectionDescriptor) -> dict:
        client = self._clients.get(descriptor)
        return strip_metadata(client.list_buckets())

    def list_objects(
        self,
        descriptor: ConnectionDescriptor,
        *,
        bucket: str,
        prefix: str = "",
        delimiter: str | None = "/",
        max_keys: int | None = None,
        continuation_token: str | None = None,
    ) -> dict:
        """Return a single ListObjectsV2 page for ``bucket``."""

        client = self._clients.for_bucket(descriptor, bucket)
        params: dict[str, object] = {"Bucket": bucket}
        if prefix:
            params["Prefix"] = prefix
        if delimiter:
            params["Delimiter"] = delimiter
        if max_keys:
            params["MaxKeys"] = max_keys
        if continuation_token:
            params["ContinuationToken"] = continuation_token
        return strip_metadata(client.list_objects_v2(**params))

    def search_objects(
        self,
        descriptor: ConnectionDescriptor,
        *,
        bucket: str,
        term: str,
        mode: str,
    ) -> dict:
        """Search a bucket server-side.

        ``begins`` is a prefix listing. ``contains`` walks every page of the
        bucket and keeps keys containing ``term`` case-insensitively, stopping
        once :data:`SEARCH_MATCH_LIMIT` matches have been collected.
        """
        client = self._clients.for_bucket(descriptor, bucket)
        if mode == SearchMode.BEGINS.value:
            response = client.list_objects_v2(Bucket=bucket, Prefix=term, Delimiter="/")
            return strip_metadata(response)

        if mode == SearchMode.CONTAINS.value:
            needle = term.lower()
            matches: list[dict] = []
            limit_reached = False
            token: str | None = None
            while True:
                params: dict[str, object] = {"Bucket": bucket}
                if token:
                    params["ContinuationToken"] = token
                response = client.list_objects_v2(**params)
                matches.extend(
                    obj for obj in response.get("Contents", []) if needle in obj.get("Key", "").lower()
                )
                if len(matches) >= SEARCH_MATCH_LIMIT:
                    limit_reached = len(matches) > SEARCH_MATCH_LIMIT or bool(response.get("IsTruncated"))
                    del matches[SEARCH_MATCH_LIMIT:]
                    break
                token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
                if not token:
                    break
            LOGGER.debug("Contains search in '%s' matched %d key(s)", bucket, len(matches))
            return {
                "Contents": matches,
                "CommonPrefixes": [],
                "IsTruncated": False,
                "LimitReached": limit_reached,
            }

        return {"Contents": [], "CommonPrefixes": [], "IsTruncated": False}

    def get_object(
        self,
        descriptor: ConnectionDescriptor,
        *,
        bucket: str,
        key: str,
        as_base64: bool = False,
    ) -> dict[str, str]:
        client = self._clients.for_bucket(descriptor, bucket)
        response = client.get_object(Bucket=bucket, Key=key)
        payload = response["Body"].read()
        if as_base64:
            return {"base64": base64.b64encode(payload).decode("ascii")}
        return {"body": payload.decode("utf-8", errors="replace")}

    def create_bucket(self, descriptor: ConnectionDescriptor, *, bucket: str) -> None:
        client = self._clients.get(descriptor)
        try:
            client.head_bucket(Bucket=bucket)
        except (ClientError, BotoCoreError):
            LOGGER.debug("HeadBucket for '%s' failed before create; continuing", bucket)
        params: dict[str, object] = {"Bucket": bucket}
        region = descriptor.region
        if region and region != "us-east-1" and not is_localstack_endpoint(descriptor.endpoint):
            params["CreateBucketConfiguration"] = {"LocationConstraint": region}
        client.create_bucket(**params)

    def create_folder(self, descriptor: ConnectionDescriptor, *, bucket: str, folder: str) -> str:
        key = folder_key(folder)
        client = self._clients.get(descriptor)
        client.put_object(Bucket=bucket, Key=key, Body=b"")
        return key

    def put_object(
        self,
        descriptor: ConnectionDescriptor,
        *,
        bucket: str,
        key: str,
        body: str,
        is_base64: bool = False,
    ) -> None:
        """Create or overwrite an object; S3 has no separate update verb."""

        if is_base64:
            try:
                payload = base64.b64decode(body, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ValidationError("Body is not valid base64") from exc
        else:
            payload = body.encode("utf-8")
        client = self._clients.get(descriptor)
        client.put_object(Bucket=bucket, Key=key, Body=payload)

    def delete_bucket(self, descriptor: ConnectionDescriptor, *, bucket: str) -> None:
        client = self._clients.get(descriptor)
        client.delete_bucket(Bucket=bucket)

    def delete_folder(self, descriptor: ConnectionDescriptor, *, bucket: str, folder: str) -> int:
        """Delete every object under ``folder``, one key at a time."""

        client = self._clients.for_bucket(descriptor, bucket)
        prefix = folder_key(folder)
        keys: list[str] = []
        token: str | None = None
        while True:
            params: dict[str, object] = {"Bucket": bucket, "Prefix": prefix}
            if token:
                params["ContinuationToken"] = token
            response = client.list_objects_v2(**params)
            keys.extend(obj["Key"] for obj in response.get("Contents", []) if obj.get("Key"))
            token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
            if not token:
                break
        for key in keys:
            client.delete_object(Bucket=bucket, Key=key)
        LOGGER.debug("Deleted %d object(s) under '%s/%s'", len(keys), bucket, prefix)
        return len(keys)

    def delete_object(self, descriptor: ConnectionDescriptor, *, bucket: str, key: str) -> None:
        client = self._clients.for_bucket(descriptor, bucket)
        client.delete_object(Bucket=bucket, Key=key)

    def get_object_details(self, descriptor: ConnectionDescriptor, *, bucket: str, key: str) -> ObjectDetails:
        client = self._clients.get(descriptor)
        response = client.head_object(Bucket=bucket, Key=key)
        return ObjectDetails(
            bucket=bucket,
            key=key,
            content_type=response.get("ContentType"),
            content_length=response.get("ContentLength"),
            last_modified=response.get("LastModified"),
            etag=response.get("ETag"),
            storage_class=response.get("StorageClass") or "STANDARD",
            metadata=dict(response.get("Metadata") or {}),
        )

    def get_bucket_info(self, descriptor: ConnectionDescriptor, *, bucket: str) -> BucketInfo:
        """Aggregate location, versioning and a content summary.

        The three SDK calls are independent and run concurrently.
        """
        client = self._clients.get(descriptor)
        with ThreadPoolExecutor(max_workers=3) as pool:
            location = pool.submit(client.get_bucket_location, Bucket=bucket)
            versioning = pool.submit(client.get_bucket_versioning, Bucket=bucket)
            listing = pool.submit(client.list_objects_v2, Bucket=bucket, MaxKeys=BUCKET_INFO_MAX_KEYS)
            location_response = location.result()
            versioning_response = versioning.result()
            listing_response = listing.result()

        last_modified = None
        for obj in listing_response.get("Contents", []):
            last_modified = _latest(last_modified, obj.get("LastModified"))
        return BucketInfo(
            location_constraint=normalize_region(location_response.get("LocationConstraint")),
            status=versioning_response.get("Status"),
            count=listing_response.get("KeyCount") or 0,
            last_modified=last_modified,
        )

    def get_folder_info(self, descriptor: ConnectionDescriptor, *, bucket: str, prefix: str) -> FolderInfo:
        client = self._clients.get(descriptor)
        info = FolderInfo()
        token: Optional[str] = None
        while True:
            params: dict[str, object] = {"Bucket": bucket, "Prefix": prefix}
            if token:
                params["ContinuationToken"] = token
            response = client.list_objects_v2(**params)
            contents = response.get("Contents", [])
            info.count += len(contents)
            for obj in contents:
                info.total_size += obj.get("Size") or 0
                info.last_modified = _latest(info.last_modified, obj.get("LastModified"))
            token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
            if not token:
                break
        return info

    def test_connection(self, descriptor: ConnectionDescriptor) -> list[dict]:
        """List buckets with a throwaway client built from ``descriptor``."""

        client = self._clients.build(descriptor, force_endpoint=True)
        return client.list_buckets().get("Buckets", [])
