from __future__ import annotations
"""FastAPI proxy routes in front of the S3 SDK."""
import logging
from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .clients import ClientFactory
from .errors import S3ExplorerError, ValidationError
from .inspector import S3Inspector
from .models import ConnectionDescriptor
from .responses import fail, fail_from_exception, ok
from .services import S3ExplorerService
from .settings import ServerSettings
from .ui_utils import load_package_info

LOGGER = logging.getLogger(__name__)

SESSION_HEADER = "x-s3-session-token"
SESSION_COOKIE = "s3session"
SESSION_COOKIE_MAX_AGE = 60 * 30
BODY_LIMITED_PATHS = ("/api/s3",)


class ObjectWriteBody(BaseModel):
    bucket: Optional[str] = None
    folder: Optional[str] = None
    body: Optional[str] = None
    isBase64: bool = False


class AclBody(BaseModel):
    bucket: Optional[str] = None
    key: Optional[str] = None
    canned: Optional[str] = None
    grants: Any = None
    owner: Any = None


class PolicyBody(BaseModel):
    bucket: Optional[str] = None
    policy: Any = None


class CorsBody(BaseModel):
    bucket: Optional[str] = None
    cors: Any = None


class TagsBody(BaseModel):
    bucket: Optional[str] = None
    key: Optional[str] = None
    tags: Any = None


class ConnectionBody(BaseModel):
    endpoint: Optional[str] = None
    region: Optional[str] = None
    accessKeyId: Optional[str] = None
    secretAccessKey: Optional[str] = None
    sessionToken: Optional[str] = None

    def descriptor(self) -> ConnectionDescriptor:
        return ConnectionDescriptor(
            region=self.region or "",
            endpoint=self.endpoint or "",
            access_key_id=self.accessKeyId or "",
            secret_access_key=self.secretAccessKey or "",
            session_token=self.sessionToken or None,
        )


class BodySizeLimitMiddleware:
    """Reject oversized request bodies with a plain-text 413.

    The declared ``Content-Length`` is checked first; bodies without one
    (chunked uploads) are buffered and counted before the route sees them.
    """

    def __init__(self, app: ASGIApp, *, limit_bytes: int, paths: tuple[str, ...] = BODY_LIMITED_PATHS):
        self.app = app
        self.limit_bytes = limit_bytes
        self.paths = paths

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] not in self.paths:
            await self.app(scope, receive, send)
            return
        headers = dict(scope.get("headers") or [])
        length = headers.get(b"content-length")
        if length is not None and length.isdigit() and int(length) > self.limit_bytes:
            await self._reject(scope, receive, send, int(length))
            return

        messages: list[Message] = []
        received = 0
        more_body = True
        while more_body:
            message = await receive()
            messages.append(message)
            if message["type"] != "http.request":
                break
            received += len(message.get("body", b""))
            if received > self.limit_bytes:
                await self._reject(scope, receive, send, received)
                return
            more_body = message.get("more_body", False)

        async def replay() -> Message:
            if messages:
                return messages.pop(0)
            return await receive()

        await self.app(scope, replay, send)

    async def _reject(self, scope: Scope, receive: Receive, send: Send, size: int) -> None:
        limit_mb = self.limit_bytes // (1024 * 1024)
        LOGGER.warning("Rejected %s body of at least %d bytes", scope["path"], size)
        response = PlainTextResponse(f"Body exceeded {limit_mb}mb limit", status_code=413)
        await response(scope, receive, send)


def get_descriptor(request: Request) -> ConnectionDescriptor:
    raw = request.headers.get(SESSION_HEADER) or request.cookies.get(SESSION_COOKIE)
    return ConnectionDescriptor.from_header(raw)


def get_service(request: Request) -> S3ExplorerService:
    return request.app.state.service


def get_inspector(request: Request) -> S3Inspector:
    return request.app.state.inspector


def _require(value: Optional[str], message: str) -> str:
    if not value:
        raise ValidationError(message)
    return value


router = APIRouter(prefix="/api")


@router.get("/s3")
def read_s3(
    bucket: Optional[str] = None,
    prefix: Optional[str] = None,
    key: Optional[str] = None,
    search: Optional[str] = None,
    search_mode: Optional[str] = Query(None, alias="searchMode"),
    max_keys: Optional[int] = Query(None, alias="maxKeys"),
    continuation_token: Optional[str] = Query(None, alias="continuationToken"),
    base64: Optional[str] = None,
    descriptor: ConnectionDescriptor = Depends(get_descriptor),
    service: S3ExplorerService = Depends(get_service),
):
    if bucket and key:
        LOGGER.debug("Fetching object '%s/%s' (base64=%s)", bucket, key, base64 == "1")
        return ok(service.get_object(descriptor, bucket=bucket, key=key, as_base64=base64 == "1"))
    if bucket and search and search_mode:
        LOGGER.debug("Searching '%s' for '%s' (%s)", bucket, search, search_mode)
        return ok(service.search_objects(descriptor, bucket=bucket, term=search, mode=search_mode))
    if bucket:
        LOGGER.debug(
            "Listing '%s' (prefix=%r, max_keys=%s, token=%s)",
            bucket,
            prefix,
            max_keys,
            bool(continuation_token),
        )
        return ok(
            service.list_objects(
                descriptor,
                bucket=bucket,
                prefix=prefix or "",
                max_keys=max_keys,
                continuation_token=continuation_token,
            )
        )
    return ok(service.list_buckets(descriptor))


@router.post("/s3")
def write_s3(
    payload: ObjectWriteBody,
    descriptor: ConnectionDescriptor = Depends(get_descriptor),
    service: S3ExplorerService = Depends(get_service),
):
    bucket, folder = payload.bucket, payload.folder
    if bucket and not folder:
        try:
            service.create_bucket(descriptor, bucket=bucket)
        except (ClientError, BotoCoreError) as exc:
            LOGGER.warning("Create bucket '%s' failed: %s", bucket, exc)
            return fail_from_exception(exc, status_code=409)
        return ok({"message": f'Bucket "{bucket}" created'})

    if bucket and folder:
        if payload.body is None:
            service.create_folder(descriptor, bucket=bucket, folder=folder)
            return ok({"message": f'Folder "{folder}" created'})
        service.put_object(
            descriptor,
            bucket=bucket,
            key=folder,
            body=payload.body,
            is_base64=payload.isBase64,
        )
        return ok({"message": f'File "{folder}" created'})

    raise ValidationError("Missing bucket or folder parameter")


@router.delete("/s3")
def delete_s3(
    bucket: Optional[str] = None,
    folder: Optional[str] = None,
    key: Optional[str] = None,
    descriptor: ConnectionDescriptor = Depends(get_descriptor),
    service: S3ExplorerService = Depends(get_service),
):
    if bucket and not folder and not key:
        try:
            service.delete_bucket(descriptor, bucket=bucket)
        except (ClientError, BotoCoreError) as exc:
            LOGGER.warning("Delete bucket '%s' failed: %s", bucket, exc)
            return fail_from_exception(exc, status_code=400)
        return ok({"message": f'Bucket "{bucket}" deleted'})

    if bucket and folder:
        deleted = service.delete_folder(descriptor, bucket=bucket, folder=folder)
        return ok({"message": f'Folder "{folder}" deleted', "deleted": deleted})

    if bucket and key:
        service.delete_object(descriptor, bucket=bucket, key=key)
        return ok({"message": f'File "{key}" deleted'})

    raise ValidationError("Missing parameters")


@router.get("/acl")
def read_acl(
    bucket: Optional[str] = None,
    key: Optional[str] = None,
    descriptor: ConnectionDescriptor = Depends(get_descriptor),
    inspector: S3Inspector = Depends(get_inspector),
):
    bucket = _require(bucket, "Missing bucket")
    return ok(inspector.get_acl(descriptor, bucket=bucket, key=key))


@router.put("/acl")
def write_acl(
    payload: AclBody,
    descriptor: ConnectionDescriptor = Depends(get_descriptor),
    inspector: S3Inspector = Depends(get_inspector),
):
    bucket = _require(payload.bucket, "Missing bucket")
    inspector.put_acl(
        descriptor,
        bucket=bucket,
        key=payload.key,
        canned=payload.canned,
        grants=payload.grants,
        owner=payload.owner,
    )
    return ok()


@router.get("/policy")
def read_policy(
    bucket: Optional[str] = None,
    descriptor: ConnectionDescriptor = Depends(get_descriptor),
    inspector: S3Inspector = Depends(get_inspector),
):
    bucket = _require(bucket, "Missing bucket")
    return ok(inspector.get_policy(descriptor, bucket=bucket))


@router.put("/policy")
def write_policy(
    payload: PolicyBody,
    descriptor: ConnectionDescriptor = Depends(get_descriptor),
    inspector: S3Inspector = Depends(get_inspector),
):
    bucket = _require(payload.bucket, "Missing bucket")
    if not payload.policy:
        raise ValidationError("Missing policy")
    inspector.put_policy(descriptor, bucket=bucket, policy=payload.policy)
    return ok()


@router.post("/policy-validate")
def validate_policy(
    payload: PolicyBody,
    descriptor: ConnectionDescriptor = Depends(get_descriptor),
    inspector: S3Inspector = Depends(get_inspector),
):
    if not payload.bucket or not payload.policy:
        raise ValidationError("Missing bucket or policy")
    try:
        inspector.validate_policy(descriptor, bucket=payload.bucket, policy=payload.policy)
    except (ClientError, BotoCoreError) as exc:
        return fail_from_exception(exc, status_code=400)
    return ok()


@router.get("/cors")
def read_cors(
    bucket: Optional[str] = None,
    descriptor: ConnectionDescriptor = Depends(get_descriptor),
    inspector: S3Inspector = Depends(get_inspector),
):
    bucket = _require(bucket, "Missing bucket")
    return ok(inspector.get_cors(descriptor, bucket=bucket))


@router.put("/cors")
def write_cors(
    payload: CorsBody,
    descriptor: ConnectionDescriptor = Depends(get_descriptor),
    inspector: S3Inspector = Depends(get_inspector),
):
    bucket = _require(payload.bucket, "Missing bucket")
    if payload.cors is None:
        raise ValidationError("Missing cors")
    try:
        warning = inspector.put_cors(descriptor, bucket=bucket, cors=payload.cors)
    except (ClientError, BotoCoreError) as exc:
        return fail_from_exception(exc, status_code=400)
    return ok(warning=warning)


@router.delete("/cors")
def delete_cors(
    bucket: Optional[str] = None,
    descriptor: ConnectionDescriptor = Depends(get_descriptor),
    inspector: S3Inspector = Depends(get_inspector),
):
    bucket = _require(bucket, "Missing bucket")
    try:
        warning = inspector.delete_cors(descriptor, bucket=bucket)
    except (ClientError, BotoCoreError) as exc:
        return fail_from_exception(exc, status_code=400)
    return ok(warning=warning)


@router.post("/cors-validate")
def validate_cors(
    payload: CorsBody,
    descriptor: ConnectionDescriptor = Depends(get_descriptor),
    inspector: S3Inspector = Depends(get_inspector),
):
    bucket = _require(payload.bucket, "Missing bucket")
    if not payload.cors:
        raise ValidationError("Missing cors")
    try:
        warning = inspector.validate_cors(descriptor, bucket=bucket, cors=payload.cors)
    except (ClientError, BotoCoreError) as exc:
        return fail_from_exception(exc, status_code=400)
    return ok(warning=warning)


@router.get("/tags")
def read_tags(
    bucket: Optional[str] = None,
    key: Optional[str] = None,
    descriptor: ConnectionDescriptor = Depends(get_descriptor),
    inspector: S3Inspector = Depends(get_inspector),
):
    bucket = _require(bucket, "Missing bucket")
    return ok(inspector.get_tags(descriptor, bucket=bucket, key=key))


@router.put("/tags")
def write_tags(
    payload: TagsBody,
    descriptor: ConnectionDescriptor = Depends(get_descriptor),
    inspector: S3Inspector = Depends(get_inspector),
):
    if not payload.bucket or not isinstance(payload.tags, list):
        raise ValidationError("Missing or invalid bucket/tags")
    inspector.put_tags(descriptor, bucket=payload.bucket, key=payload.key, tags=payload.tags)
    return ok()


@router.get("/meta")
def read_object_meta(
    bucket: Optional[str] = None,
    key: Optional[str] = None,
    descriptor: ConnectionDescriptor = Depends(get_descriptor),
    service: S3ExplorerService = Depends(get_service),
):
    if not bucket or not key:
        raise ValidationError("Missing bucket or key")
    return ok(service.get_object_details(descriptor, bucket=bucket, key=key).to_payload())


@router.get("/bucket-meta")
def read_bucket_meta(
    bucket: Optional[str] = None,
    descriptor: ConnectionDescriptor = Depends(get_descriptor),
    service: S3ExplorerService = Depends(get_service),
):
    bucket = _require(bucket, "Missing bucket")
    return ok(service.get_bucket_info(descriptor, bucket=bucket).to_payload())


@router.get("/folder-meta")
def read_folder_meta(
    bucket: Optional[str] = None,
    prefix: Optional[str] = None,
    descriptor: ConnectionDescriptor = Depends(get_descriptor),
    service: S3ExplorerService = Depends(get_service),
):
    if not bucket or not prefix:
        raise ValidationError("Missing bucket or prefix")
    return ok(service.get_folder_info(descriptor, bucket=bucket, prefix=prefix).to_payload())


@router.post("/test-s3-connection")
def check_s3_connection(payload: ConnectionBody, service: S3ExplorerService = Depends(get_service)):
    try:
        buckets = service.test_connection(payload.descriptor())
    except (ClientError, BotoCoreError) as exc:
        LOGGER.warning("Connection test against '%s' failed: %s", payload.endpoint or "<aws default>", exc)
        return fail_from_exception(exc, status_code=400)
    return ok({"Buckets": buckets})


@router.post("/session/set-connection")
def set_connection(payload: ConnectionBody, request: Request):
    settings: ServerSettings = request.app.state.settings
    response = ok()
    response.set_cookie(
        SESSION_COOKIE,
        payload.descriptor().to_header(),
        max_age=SESSION_COOKIE_MAX_AGE,
        path="/",
        httponly=True,
        secure=settings.production,
        samesite="lax",
    )
    return response


def register_exception_handlers(app: FastAPI) -> None:
    """Turn every failure into the response envelope."""

    @app.exception_handler(S3ExplorerError)
    async def explorer_error_handler(request: Request, exc: S3ExplorerError):
        return fail(exc.message, exc.code, status_code=exc.status_code)

    @app.exception_handler(ClientError)
    async def client_error_handler(request: Request, exc: ClientError):
        LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc)
        return fail_from_exception(exc)

    @app.exception_handler(BotoCoreError)
    async def botocore_error_handler(request: Request, exc: BotoCoreError):
        LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc)
        return fail_from_exception(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
            for error in exc.errors()
        )
        return fail(problems or "Invalid request", "BadRequest", status_code=400)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return fail(str(exc.detail), status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        LOGGER.exception("%s %s failed unexpectedly", request.method, request.url.path)
        return fail_from_exception(exc, status_code=500)


def create_app(
    settings: ServerSettings | None = None,
    client_factory: ClientFactory | None = None,
) -> FastAPI:
    settings = settings or ServerSettings()
    factory = client_factory or ClientFactory(default_region=settings.default_region)

    app = FastAPI(title="S3 Explorer", version=load_package_info().version or "0.0.0")
    app.state.settings = settings
    app.state.service = S3ExplorerService(factory)
    app.state.inspector = S3Inspector(factory)

    app.add_middleware(BodySizeLimitMiddleware, limit_bytes=settings.upload_limit_bytes)
    register_exception_handlers(app)
    app.include_router(router)
    return app
