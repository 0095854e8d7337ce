from __future__ import annotations
"""Uniform ``{ok, data|error}`` response envelope."""
import logging
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .errors import ErrorKind, classify_error, error_code, error_message

LOGGER = logging.getLogger(__name__)


def ok(data: Any = None, *, status_code: int = 200, warning: Optional[str] = None) -> JSONResponse:
    content: dict[str, Any] = {"ok": True, "data": jsonable_encoder(data)}
    if warning:
        content["warning"] = warning
    return JSONResponse(status_code=status_code, content=content)


def fail(message: str, code: Optional[str] = None, *, status_code: int = 400) -> JSONResponse:
    error: dict[str, Any] = {"message": message}
    if code:
        error["code"] = code
    LOGGER.debug("Responding %d: %s (%s)", status_code, message, code)
    return JSONResponse(status_code=status_code, content={"ok": False, "error": error})


def fail_from_exception(exc: BaseException, *, status_code: int | None = None) -> JSONResponse:
    """Surface an SDK or validation failure verbatim.

    Without an explicit ``status_code`` the HTTP status follows
    :func:`classify_error`: caller mistakes are 400, everything else 500.
    """
    if status_code is None:
        status_code = 400 if classify_error(exc) is ErrorKind.CLIENT else 500
    return fail(error_message(exc), error_code(exc), status_code=status_code)
