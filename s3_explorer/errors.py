from __future__ import annotations
"""Error types and classification of SDK failures."""
from enum import Enum
import re
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError


LOCALSTACK_QUIRK_MARKERS = (
    "char '{' is not expected",
    "Deserialization error",
    "unexpected token",
)

ABSENCE_CODES = frozenset(
    {
        "NoSuchBucketPolicy",
        "NoSuchCORSConfiguration",
        "NoSuchTagSet",
    }
)
_ABSENCE_PATTERN = re.compile("|".join(sorted(ABSENCE_CODES)))


class S3ExplorerError(Exception):
    """Base class for errors surfaced through the response envelope."""

    status_code = 500
    code = "ServerError"

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class ValidationError(S3ExplorerError):
    """Raised for missing or malformed caller input, before any SDK call."""

    status_code = 400
    code = "BadRequest"


class SessionTokenError(ValidationError):
    """Raised when the session header cannot be turned into a connection."""

    code = "InvalidSessionToken"


class ApiError(RuntimeError):
    """Raised on the client side when the proxy API reports a failure."""

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class ErrorKind(str, Enum):
    SOFT = "soft"
    ABSENT = "absent"
    CLIENT = "client"
    SERVER = "server"


def error_code(exc: BaseException) -> Optional[str]:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code") or None
    if isinstance(exc, S3ExplorerError):
        return exc.code
    return type(exc).__name__


def error_message(exc: BaseException) -> str:
    if isinstance(exc, ClientError):
        message = exc.response.get("Error", {}).get("Message")
        if message:
            return message
    return str(exc) or type(exc).__name__


def classify_error(exc: BaseException) -> ErrorKind:
    """Decide how a failure is surfaced to the UI.

    LocalStack deserialization quirks become soft warnings, "nothing
    configured" answers become empty successes, caller mistakes map to 400
    and everything else to 500.
    """
    message = str(exc)
    if any(marker in message for marker in LOCALSTACK_QUIRK_MARKERS):
        return ErrorKind.SOFT
    code = error_code(exc)
    if code in ABSENCE_CODES or _ABSENCE_PATTERN.search(message):
        return ErrorKind.ABSENT
    if isinstance(exc, S3ExplorerError):
        return ErrorKind.CLIENT if exc.status_code < 500 else ErrorKind.SERVER
    if isinstance(exc, ClientError):
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
        if 400 <= status < 500:
            return ErrorKind.CLIENT
        return ErrorKind.SERVER
    if isinstance(exc, (BotoCoreError, ValueError)):
        return ErrorKind.CLIENT
    return ErrorKind.SERVER
