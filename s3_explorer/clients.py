from __future__ import annotations
"""Construction and caching of boto3 S3 clients."""
import logging
import threading
from typing import Callable
from urllib.parse import urlparse

import boto3
from botocore.config import Config

from .models import ConnectionDescriptor
from .settings import DEFAULT_REGION

LOGGER = logging.getLogger(__name__)

LOCALSTACK_HOSTS = frozenset({"localhost", "127.0.0.1"})
LOCALSTACK_PORTS = frozenset({4566})


def is_localstack_endpoint(endpoint: str | None) -> bool:
    if not endpoint:
        return False
    parsed = urlparse(endpoint if "://" in endpoint else f"http://{endpoint}")
    try:
        port = parsed.port
    except ValueError:
        port = None
    return parsed.hostname in LOCALSTACK_HOSTS or port in LOCALSTACK_PORTS


def normalize_region(location: str | None) -> str:
    """Map a ``GetBucketLocation`` answer to a usable region name."""

    if not location:
        return "us-east-1"
    if location == "EU":
        return "eu-west-1"
    return location


class ClientFactory:
    """Memoizing factory returning one S3 client per connection descriptor."""

    def __init__(
        self,
        builder: Callable[..., object] | None = None,
        *,
        default_region: str = DEFAULT_REGION,
    ):
        self._builder = builder or boto3.client
        self._default_region = default_region
        self._cache: dict[str, object] = {}
        self._lock = threading.Lock()

    def get(self, descriptor: ConnectionDescriptor):
        key = descriptor.cache_key()
        with self._lock:
            client = self._cache.get(key)
            if client is None:
                client = self.build(descriptor)
                self._cache[key] = client
        return client

    def build(self, descriptor: ConnectionDescriptor, *, force_endpoint: bool = False):
        """Create a client without consulting the cache.

        LocalStack endpoints are addressed explicitly with path-style URLs;
        anything else goes through the SDK's endpoint resolution unless
        ``force_endpoint`` is set.
        """
        localstack = is_localstack_endpoint(descriptor.endpoint)
        region = descriptor.region or self._default_region
        use_endpoint = bool(descriptor.endpoint) and (localstack or force_endpoint)
        if localstack or force_endpoint:
            config = Config(signature_version="s3v4", s3={"addressing_style": "path"})
        else:
            config = Config(signature_version="s3v4")
        LOGGER.debug(
            "Building S3 client (region=%s, endpoint=%s, path_style=%s)",
            region,
            descriptor.endpoint if use_endpoint else "<aws default>",
            localstack or force_endpoint,
        )
        return self._builder(
            "s3",
            region_name=region,
            endpoint_url=descriptor.endpoint if use_endpoint else None,
            aws_access_key_id=descriptor.access_key_id or None,
            aws_secret_access_key=descriptor.secret_access_key or None,
            aws_session_token=descriptor.session_token or None,
            config=config,
        )

    def resolve_region(self, descriptor: ConnectionDescriptor, bucket: str) -> str:
        client = self.get(descriptor)
        response = client.get_bucket_location(Bucket=bucket)
        return normalize_region(response.get("LocationConstraint"))

    def for_bucket(self, descriptor: ConnectionDescriptor, bucket: str):
        """Return a client bound to the region the bucket actually lives in."""

        region = self.resolve_region(descriptor, bucket)
        if region == descriptor.region:
            return self.get(descriptor)
        LOGGER.debug("Bucket '%s' lives in %s; switching client region", bucket, region)
        return self.get(descriptor.with_region(region))

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
