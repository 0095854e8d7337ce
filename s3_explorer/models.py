from __future__ import annotations
"""Data models shared by the proxy routes and the client-side controllers."""
from dataclasses import dataclass, field, replace
from enum import Enum
import hashlib
import json
from typing import Optional

from .errors import SessionTokenError


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Everything needed to build an S3 client for one request."""

    region: str = ""
    endpoint: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    session_token: Optional[str] = None

    def cache_key(self) -> str:
        material = f"{self.region}:{self.endpoint or ''}:{self.access_key_id}:{self.secret_access_key}"
        if self.session_token:
            material += f":{self.session_token}"
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    def with_region(self, region: str) -> ConnectionDescriptor:
        return replace(self, region=region)

    def to_payload(self) -> dict[str, str]:
        payload = {
            "region": self.region,
            "endpoint": self.endpoint,
            "accessKeyId": self.access_key_id,
            "secretAccessKey": self.secret_access_key,
        }
        if self.session_token:
            payload["sessionToken"] = self.session_token
        return payload

    def to_header(self) -> str:
        return json.dumps(self.to_payload())

    @classmethod
    def from_header(cls, raw: object) -> ConnectionDescriptor:
        """Parse the JSON carried by the ``x-s3-session-token`` header.

        Raises:
            SessionTokenError: when the value is missing or malformed.
        """
        if not raw or not isinstance(raw, str):
            raise SessionTokenError("Missing or invalid session token")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise SessionTokenError("Missing or invalid session token") from exc
        if not isinstance(data, dict):
            raise SessionTokenError("Missing or invalid session token")
        return cls(
            region=str(data.get("region") or ""),
            endpoint=str(data.get("endpoint") or ""),
            access_key_id=str(data.get("accessKeyId") or ""),
            secret_access_key=str(data.get("secretAccessKey") or ""),
            session_token=data.get("sessionToken") or None,
        )


@dataclass
class S3Node:
    """A single entry of the directory-like tree view."""

    name: str
    full_key: str
    is_dir: bool


class SearchMode(str, Enum):
    BEGINS = "begins"
    CONTAINS = "contains"
    REMOTE = "remote"


@dataclass
class PaginationCursor:
    """Client-held mirror of S3's continuation-token protocol."""

    continuation_token: Optional[str] = None
    next_continuation_token: Optional[str] = None
    has_more: bool = False
    current_page: int = 1
    prev_tokens: list[Optional[str]] = field(default_factory=list)

    def record(self, listing: dict) -> None:
        truncated = bool(listing.get("IsTruncated"))
        token = listing.get("NextContinuationToken") if truncated else None
        self.next_continuation_token = token
        self.has_more = bool(token)

    def advance(self) -> Optional[str]:
        if not self.has_more:
            return None
        self.prev_tokens.append(self.continuation_token)
        self.continuation_token = self.next_continuation_token
        self.current_page += 1
        return self.continuation_token

    def copy(self) -> PaginationCursor:
        return replace(self, prev_tokens=list(self.prev_tokens))

    def back(self) -> bool:
        if self.current_page <= 1 or not self.prev_tokens:
            return False
        self.continuation_token = self.prev_tokens.pop()
        self.current_page -= 1
        return True


@dataclass
class ObjectDetails:
    """Metadata about a single S3 object."""

    bucket: str
    key: str
    content_type: Optional[str] = None
    content_length: Optional[int] = None
    last_modified: Optional[object] = None
    etag: Optional[str] = None
    storage_class: str = "STANDARD"
    metadata: dict[str, str] = field(default_factory=dict)

    def to_payload(self) -> dict:
        return {
            "ContentType": self.content_type,
            "ContentLength": self.content_length,
            "LastModified": self.last_modified,
            "ETag": self.etag,
            "Metadata": dict(self.metadata),
            "StorageClass": self.storage_class,
        }


@dataclass
class BucketInfo:
    location_constraint: str
    status: Optional[str] = None
    count: int = 0
    last_modified: Optional[object] = None

    def to_payload(self) -> dict:
        return {
            "LocationConstraint": self.location_constraint,
            "Status": self.status,
            "count": self.count,
            "lastModified": self.last_modified,
        }


@dataclass
class FolderInfo:
    count: int = 0
    total_size: int = 0
    last_modified: Optional[object] = None

    def to_payload(self) -> dict:
        return {
            "count": self.count,
            "totalSize": self.total_size,
            "lastModified": self.last_modified,
        }
