from __future__ import annotations
"""Client-side access to the proxy API."""
import logging
from typing import Any, Optional

import httpx

from .errors import ApiError
from .models import ConnectionDescriptor
from .profiles import SessionState

LOGGER = logging.getLogger(__name__)

SESSION_HEADER = "x-s3-session-token"


class ExplorerApi:
    """Thin wrapper over the proxy routes.

    Every request carries the active session in the ``x-s3-session-token``
    header. Successful envelopes are unwrapped to their ``data``; failures
    raise :class:`ApiError`. Responses that are not JSON (for example the
    body-size 413) are reported with their plain text.
    """

    def __init__(
        self,
        session: SessionState,
        *,
        base_url: str = "http://127.0.0.1:8000",
        http_client: httpx.Client | None = None,
        timeout: float | None = 30.0,
    ):
        self._session = session
        self._http = http_client or httpx.Client(base_url=base_url, timeout=timeout)
        self.last_warning: Optional[str] = None

    def close(self) -> None:
        self._http.close()

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        headers = {SESSION_HEADER: self._session.token or ""}
        query = {name: value for name, value in (params or {}).items() if value not in (None, "")}
        LOGGER.debug("%s %s %s", method, path, sorted(query))
        try:
            response = self._http.request(method, path, params=query, json=json, headers=headers)
        except httpx.HTTPError as exc:
            raise ApiError(str(exc) or "Network error") from exc

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            raise ApiError(response.text or f"HTTP {response.status_code}", status_code=response.status_code)

        payload = response.json()
        if isinstance(payload, dict) and payload.get("ok"):
            self.last_warning = payload.get("warning")
            if self.last_warning:
                LOGGER.warning("%s %s: %s", method, path, self.last_warning)
            return payload.get("data")

        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            raise ApiError(
                error.get("message") or f"HTTP {response.status_code}",
                code=error.get("code"),
                status_code=response.status_code,
            )
        message = error or (payload.get("message") if isinstance(payload, dict) else None)
        raise ApiError(str(message or f"HTTP {response.status_code}"), status_code=response.status_code)

    # buckets and objects

    def list_buckets(self) -> list[str]:
        data = self.request("GET", "/api/s3") or {}
        return [bucket["Name"] for bucket in data.get("Buckets") or [] if bucket.get("Name")]

    def list_objects(
        self,
        bucket: str,
        *,
        prefix: str = "",
        max_keys: int | None = None,
        continuation_token: str | None = None,
    ) -> dict:
        return self.request(
            "GET",
            "/api/s3",
            params={
                "bucket": bucket,
                "prefix": prefix,
                "maxKeys": max_keys,
                "continuationToken": continuation_token,
            },
        )

    def search(self, bucket: str, term: str, mode: str) -> dict:
        return self.request("GET", "/api/s3", params={"bucket": bucket, "search": term, "searchMode": mode})

    def get_object_text(self, bucket: str, key: str) -> str:
        data = self.request("GET", "/api/s3", params={"bucket": bucket, "key": key}) or {}
        return data.get("body") or ""

    def get_object_base64(self, bucket: str, key: str) -> str:
        data = self.request("GET", "/api/s3", params={"bucket": bucket, "key": key, "base64": "1"}) or {}
        return data.get("base64") or ""

    def create_bucket(self, bucket: str) -> None:
        self.request("POST", "/api/s3", json={"bucket": bucket})

    def create_folder(self, bucket: str, folder: str) -> None:
        self.request("POST", "/api/s3", json={"bucket": bucket, "folder": folder})

    def put_object(self, bucket: str, key: str, body: str, *, is_base64: bool = False) -> None:
        self.request("POST", "/api/s3", json={"bucket": bucket, "folder": key, "body": body, "isBase64": is_base64})

    def delete_bucket(self, bucket: str) -> None:
        self.request("DELETE", "/api/s3", params={"bucket": bucket})

    def delete_folder(self, bucket: str, folder: str) -> None:
        self.request("DELETE", "/api/s3", params={"bucket": bucket, "folder": folder})

    def delete_object(self, bucket: str, key: str) -> None:
        self.request("DELETE", "/api/s3", params={"bucket": bucket, "key": key})

    # metadata

    def object_meta(self, bucket: str, key: str) -> dict:
        return self.request("GET", "/api/meta", params={"bucket": bucket, "key": key})

    def bucket_meta(self, bucket: str) -> dict:
        return self.request("GET", "/api/bucket-meta", params={"bucket": bucket})

    def folder_meta(self, bucket: str, prefix: str) -> dict:
        return self.request("GET", "/api/folder-meta", params={"bucket": bucket, "prefix": prefix})

    def get_acl(self, bucket: str, key: str | None = None) -> dict:
        return self.request("GET", "/api/acl", params={"bucket": bucket, "key": key})

    def put_acl(
        self,
        bucket: str,
        *,
        key: str | None = None,
        canned: str | None = None,
        grants: list | None = None,
        owner: dict | None = None,
    ) -> None:
        body = {"bucket": bucket, "key": key, "canned": canned, "grants": grants, "owner": owner}
        self.request("PUT", "/api/acl", json={name: value for name, value in body.items() if value is not None})

    def get_policy(self, bucket: str) -> dict:
        return (self.request("GET", "/api/policy", params={"bucket": bucket}) or {}).get("Policy") or {}

    def put_policy(self, bucket: str, policy: dict) -> None:
        self.request("PUT", "/api/policy", json={"bucket": bucket, "policy": policy})

    def validate_policy(self, bucket: str, policy: dict) -> None:
        self.request("POST", "/api/policy-validate", json={"bucket": bucket, "policy": policy})

    def get_cors(self, bucket: str) -> list:
        return (self.request("GET", "/api/cors", params={"bucket": bucket}) or {}).get("CORSRules") or []

    def put_cors(self, bucket: str, rules: list) -> None:
        self.request("PUT", "/api/cors", json={"bucket": bucket, "cors": rules})

    def delete_cors(self, bucket: str) -> None:
        self.request("DELETE", "/api/cors", params={"bucket": bucket})

    def get_tags(self, bucket: str, key: str | None = None) -> list:
        return (self.request("GET", "/api/tags", params={"bucket": bucket, "key": key}) or {}).get("TagSet") or []

    def put_tags(self, bucket: str, tags: list, key: str | None = None) -> None:
        body = {"bucket": bucket, "tags": tags}
        if key:
            body["key"] = key
        self.request("PUT", "/api/tags", json=body)

    # connections

    def test_connection(self, descriptor: ConnectionDescriptor) -> list:
        return (self.request("POST", "/api/test-s3-connection", json=descriptor.to_payload()) or {}).get("Buckets") or []

    def set_connection(self, descriptor: ConnectionDescriptor) -> None:
        self.request("POST", "/api/session/set-connection", json=descriptor.to_payload())
