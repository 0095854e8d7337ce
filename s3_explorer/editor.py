from __future__ import annotations
"""Editor buffer, save flow and format-specific previews."""
import csv
from dataclasses import dataclass, field
from enum import Enum
import io
import json
import logging
import posixpath
import re
from typing import Any, Callable, Optional

from .errors import ApiError
from .transport import ExplorerApi
from .ui_utils import compose_s3_key

LOGGER = logging.getLogger(__name__)


class ViewerKind(str, Enum):
    IMAGE = "image"
    CSV = "csv"
    JSON = "json"
    MARKDOWN = "markdown"
    PDF = "pdf"
    TEXT = "text"


_VIEWERS_BY_EXTENSION = {
    "png": ViewerKind.IMAGE,
    "jpg": ViewerKind.IMAGE,
    "jpeg": ViewerKind.IMAGE,
    "gif": ViewerKind.IMAGE,
    "webp": ViewerKind.IMAGE,
    "bmp": ViewerKind.IMAGE,
    "svg": ViewerKind.IMAGE,
    "csv": ViewerKind.CSV,
    "tsv": ViewerKind.CSV,
    "json": ViewerKind.JSON,
    "md": ViewerKind.MARKDOWN,
    "markdown": ViewerKind.MARKDOWN,
    "pdf": ViewerKind.PDF,
}

_NUMERIC_CELL = re.compile(r"^[\d\s.,-]+$")


def file_extension(name: str) -> str:
    _, ext = posixpath.splitext(name)
    return ext[1:].lower()


def viewer_for(name: str) -> ViewerKind:
    return _VIEWERS_BY_EXTENSION.get(file_extension(name), ViewerKind.TEXT)


def needs_base64(name: str) -> bool:
    return viewer_for(name) in (ViewerKind.IMAGE, ViewerKind.PDF)


def mime_type_for(name: str) -> str:
    ext = file_extension(name)
    if ext == "svg":
        return "image/svg+xml"
    if ext == "pdf":
        return "application/pdf"
    if viewer_for(name) is ViewerKind.IMAGE:
        return f"image/{'jpeg' if ext == 'jpg' else ext}"
    return "text/plain"


def looks_like_header(row: list[str]) -> bool:
    """Heuristic: a header row has several unique, non-empty, non-numeric cells."""

    if len(row) < 2:
        return False
    if any(not cell.strip() for cell in row):
        return False
    if all(_NUMERIC_CELL.match(cell) for cell in row):
        return False
    return len({cell.strip().lower() for cell in row}) == len(row)


@dataclass
class Preview:
    kind: ViewerKind
    text: str = ""
    header: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)
    data: Any = None
    error: Optional[str] = None
    data_url: Optional[str] = None


def build_preview(name: str, content: str) -> Preview:
    """Render ``content`` the way the viewer for ``name`` would show it.

    Images and PDFs expect ``content`` to be base64 and become data URLs.
    CSV/TSV is split into rows; when the first row does not look like a
    header, spreadsheet-style column letters are used instead. JSON is
    parsed, with the parse error reported rather than raised.
    """
    kind = viewer_for(name)
    if kind in (ViewerKind.IMAGE, ViewerKind.PDF):
        return Preview(kind=kind, data_url=f"data:{mime_type_for(name)};base64,{content}")

    if kind is ViewerKind.CSV:
        delimiter = "\t" if file_extension(name) == "tsv" else ","
        rows = list(csv.reader(io.StringIO(content), delimiter=delimiter))
        if not rows:
            return Preview(kind=kind)
        if looks_like_header(rows[0]):
            return Preview(kind=kind, header=rows[0], rows=rows[1:])
        width = max(len(row) for row in rows)
        header = [chr(ord("A") + index) for index in range(width)]
        return Preview(kind=kind, header=header, rows=rows)

    if kind is ViewerKind.JSON:
        try:
            return Preview(kind=kind, data=json.loads(content), text=content)
        except json.JSONDecodeError as exc:
            return Preview(kind=kind, text=content, error=f"Invalid JSON: {exc.msg} (line {exc.lineno})")

    return Preview(kind=kind, text=content)


@dataclass
class EditorBuffer:
    """Original vs. edited content of the file shown in the editor."""

    original_content: str = ""
    edited_content: str = ""
    selected_file: Optional[str] = None
    is_new_file: bool = False
    new_file_prefix: str = ""
    wrap: bool = False

    @property
    def dirty(self) -> bool:
        return self.edited_content != self.original_content

    @property
    def is_open(self) -> bool:
        return self.selected_file is not None or self.is_new_file


class EditorController:
    """Open, edit and save objects through the proxy API."""

    def __init__(
        self,
        api: ExplorerApi,
        *,
        prompt: Callable[[str], Optional[str]],
        upload_limit_bytes: int | None = None,
        wrap: bool = False,
    ):
        self._api = api
        self._prompt = prompt
        self._upload_limit_bytes = upload_limit_bytes
        self.buffer = EditorBuffer(wrap=wrap)
        self.bucket: Optional[str] = None

    @property
    def dirty(self) -> bool:
        return self.buffer.dirty

    @property
    def viewer(self) -> Optional[ViewerKind]:
        if self.buffer.selected_file is None:
            return ViewerKind.TEXT if self.buffer.is_new_file else None
        return viewer_for(self.buffer.selected_file)

    def open(self, bucket: str, key: str) -> EditorBuffer:
        if needs_base64(key):
            content = self._api.get_object_base64(bucket, key)
        else:
            content = self._api.get_object_text(bucket, key)
        self.bucket = bucket
        self.buffer = EditorBuffer(
            original_content=content,
            edited_content=content,
            selected_file=key,
            wrap=self.buffer.wrap,
        )
        LOGGER.debug("Opened %s/%s (%s)", bucket, key, viewer_for(key).value)
        return self.buffer

    def start_new_file(self, bucket: str, prefix: str) -> EditorBuffer:
        self.bucket = bucket
        self.buffer = EditorBuffer(is_new_file=True, new_file_prefix=prefix, wrap=self.buffer.wrap)
        return self.buffer

    def edit(self, content: str) -> None:
        self.buffer.edited_content = content

    def toggle_wrap(self) -> bool:
        self.buffer.wrap = not self.buffer.wrap
        return self.buffer.wrap

    def preview(self) -> Optional[Preview]:
        name = self.buffer.selected_file
        if name is None:
            return None
        return build_preview(name, self.buffer.edited_content)

    def save(self) -> Optional[str]:
        """Write the edited content; returns the saved key or ``None`` if cancelled.

        New files prompt for a name which is joined to the prefix they were
        started in. Existing files are overwritten in place.
        """
        if self.bucket is None or not self.buffer.is_open:
            return None
        content = self.buffer.edited_content
        if self.buffer.is_new_file:
            name = self._prompt("Enter file name")
            if not name or not name.strip():
                return None
            key = compose_s3_key(self.buffer.new_file_prefix, name)
            if self._upload_limit_bytes is not None and len(content.encode("utf-8")) > self._upload_limit_bytes:
                limit_mb = self._upload_limit_bytes // (1024 * 1024)
                raise ApiError(f"File exceeds the {limit_mb} MB upload limit", code="PayloadTooLarge", status_code=413)
        else:
            key = self.buffer.selected_file

        if needs_base64(key) and not self.buffer.is_new_file:
            self._api.put_object(self.bucket, key, content, is_base64=True)
        else:
            self._api.put_object(self.bucket, key, content)
        LOGGER.info("Saved %s/%s", self.bucket, key)
        self.buffer.original_content = content
        self.buffer.selected_file = key
        self.buffer.is_new_file = False
        return key

    def discard(self) -> None:
        self.buffer.edited_content = self.buffer.original_content

    def reset(self) -> None:
        self.buffer = EditorBuffer(wrap=self.buffer.wrap)
        self.bucket = None
