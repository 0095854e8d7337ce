from __future__ import annotations
"""Tree navigation over the proxy API."""
from contextlib import contextmanager
import logging
from typing import Callable, Iterator, Optional

from .editor import EditorController
from .errors import ApiError
from .models import PaginationCursor, S3Node, SearchMode
from .settings import AppSettings, SettingsStorage
from .transport import ExplorerApi
from .ui_utils import format_last_modified, format_size

LOGGER = logging.getLogger(__name__)

DISCARD_PROMPT = "You have unsaved changes. Discard them and continue?"


def build_tree(prefix: str, data: dict) -> list[S3Node]:
    """Turn one listing page into directory nodes followed by file nodes.

    Directory-marker keys (the prefix itself or anything ending in ``/``)
    never show up as files.
    """
    dirs = [
        S3Node(name=_relative(entry["Prefix"], prefix).rstrip("/"), full_key=entry["Prefix"], is_dir=True)
        for entry in data.get("CommonPrefixes") or []
        if entry.get("Prefix")
    ]
    files = [
        S3Node(name=_relative(obj["Key"], prefix), full_key=obj["Key"], is_dir=False)
        for obj in data.get("Contents") or []
        if obj.get("Key") and obj["Key"] != prefix and not obj["Key"].endswith("/")
    ]
    return dirs + files


def _relative(key: str, prefix: str) -> str:
    return key[len(prefix):] if prefix and key.startswith(prefix) else key


def breadcrumb_segments(prefix: str) -> list[str]:
    stripped = prefix.rstrip("/")
    return stripped.split("/") if stripped else []


class NavigationController:
    """Holds the browsing state for one connection.

    Failures reported by the API become :attr:`error` (the banner text) and
    never propagate to the caller. Leaving a file with unsaved edits asks
    ``confirm`` first.
    """

    def __init__(
        self,
        api: ExplorerApi,
        *,
        confirm: Callable[[str], bool],
        prompt: Callable[[str], Optional[str]],
        settings_storage: SettingsStorage | None = None,
        editor: EditorController | None = None,
        upload_limit_bytes: int | None = None,
    ):
        self._api = api
        self._confirm = confirm
        self._prompt = prompt
        self._settings_storage = settings_storage
        self.settings = settings_storage.load() if settings_storage else AppSettings()
        self.editor = editor or EditorController(
            api,
            prompt=prompt,
            upload_limit_bytes=upload_limit_bytes,
            wrap=self.settings.wrap,
        )
        self.buckets: list[str] = []
        self.error: Optional[str] = None
        self.loading = False
        self.search_term = ""
        self.search_mode = SearchMode(self.settings.search_mode)
        self.limit_reached = False
        self._sequence = 0
        self._reset_bucket_state(None)

    def _reset_bucket_state(self, bucket: Optional[str]) -> None:
        self.selected_bucket = bucket
        self.current_prefix = ""
        self.breadcrumb: list[str] = []
        self.tree: Optional[list[S3Node]] = None
        self.page_nodes: list[S3Node] = []
        self.cursor = PaginationCursor()
        self.selected_node: Optional[S3Node] = None
        self.details: dict[str, str] = {}

    @property
    def page_size(self) -> int:
        return self.settings.page_size

    @property
    def dirty(self) -> bool:
        return self.editor.dirty

    @contextmanager
    def _busy(self) -> Iterator[None]:
        self.loading = True
        try:
            yield
        except ApiError as exc:
            LOGGER.warning("Request failed: %s", exc.message)
            self.error = exc.message
        finally:
            self.loading = False

    def _confirm_discard(self) -> bool:
        return not self.dirty or self._confirm(DISCARD_PROMPT)

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    def _is_current(self, sequence: int) -> bool:
        if sequence != self._sequence:
            LOGGER.debug("Dropping superseded response #%d", sequence)
            return False
        return True

    def dismiss_error(self) -> None:
        self.error = None

    def update_settings(self, *, page_size: int | None = None, search_mode: str | None = None) -> None:
        if page_size is not None:
            self.settings.page_size = max(int(page_size), 1)
        if search_mode is not None:
            self.search_mode = SearchMode(search_mode)
            self.settings.search_mode = self.search_mode.value
        self.settings.wrap = self.editor.buffer.wrap
        if self._settings_storage is not None:
            self._settings_storage.save(self.settings)

    # buckets

    def fetch_buckets(self) -> list[str]:
        with self._busy():
            self.buckets = self._api.list_buckets()
        return self.buckets

    def select_bucket(self, bucket: Optional[str]) -> bool:
        if not self._confirm_discard():
            return False
        self._reset_bucket_state(bucket)
        self.editor.reset()
        self.search_term = ""
        if bucket:
            self.open_prefix("", confirm=False)
        return True

    def create_bucket(self) -> Optional[str]:
        name = self._prompt("Bucket name?")
        if not name or not name.strip():
            return None
        with self._busy():
            self._api.create_bucket(name.strip())
            self.fetch_buckets()
            return name.strip()
        return None

    def delete_bucket(self, bucket: str) -> bool:
        if not self._confirm(f'Delete bucket "{bucket}"?'):
            return False
        with self._busy():
            self._api.delete_bucket(bucket)
            self.fetch_buckets()
            if bucket == self.selected_bucket:
                self._reset_bucket_state(None)
                self.editor.reset()
            return True
        return False

    # listing

    def open_prefix(self, prefix: str, *, confirm: bool = True) -> bool:
        if not self.selected_bucket:
            return False
        if confirm and not self._confirm_discard():
            return False
        self.error = None
        self.current_prefix = prefix
        self.cursor = PaginationCursor()
        self.search_term = ""
        self.limit_reached = False
        return self._load_page()

    def open_breadcrumb(self, index: int) -> bool:
        """Jump to the ancestor at ``index``; ``-1`` is the bucket root."""

        segments = self.breadcrumb[: index + 1] if index >= 0 else []
        prefix = "/".join(segments) + "/" if segments else ""
        return self.open_prefix(prefix)

    def next_page(self) -> bool:
        if not self.cursor.has_more or not self._confirm_discard():
            return False
        cursor = self.cursor.copy()
        cursor.advance()
        return self._load_page(cursor)

    def prev_page(self) -> bool:
        if self.cursor.current_page <= 1 or not self._confirm_discard():
            return False
        cursor = self.cursor.copy()
        cursor.back()
        return self._load_page(cursor)

    def _load_page(self, cursor: Optional[PaginationCursor] = None) -> bool:
        """Fetch the page ``cursor`` points at; the cursor is kept only on success."""

        if cursor is None:
            cursor = self.cursor
        bucket = self.selected_bucket
        prefix = self.current_prefix
        sequence = self._next_sequence()
        with self._busy():
            data = self._api.list_objects(
                bucket,
                prefix=prefix,
                max_keys=self.page_size,
                continuation_token=cursor.continuation_token,
            )
            if not self._is_current(sequence):
                return False
            cursor.record(data or {})
            self.cursor = cursor
            self.page_nodes = build_tree(prefix, data or {})
            self.tree = list(self.page_nodes)
            self.breadcrumb = breadcrumb_segments(prefix)
            self.selected_node = None
            self.editor.reset()
            return True
        return False

    def refresh_current(self) -> bool:
        if self.selected_node is not None and not self.selected_node.is_dir:
            return self.open_file(self.selected_node)
        return self.open_prefix(self.current_prefix)

    def reload(self) -> None:
        """Start over after the active connection changed."""

        self._sequence += 1
        self._reset_bucket_state(None)
        self.editor.reset()
        self.buckets = []
        self.error = None
        self.search_term = ""
        self.fetch_buckets()

    # search

    def search(self, term: str) -> bool:
        """Filter the current view.

        ``begins`` asks the server for keys starting with ``term``;
        ``contains`` filters the page already on screen; ``remote`` asks the
        server to scan the whole bucket for keys containing ``term``.
        """
        if not self.selected_bucket:
            return False
        self.search_term = term
        self.limit_reached = False
        if not term:
            self.tree = list(self.page_nodes)
            return True

        if self.search_mode is SearchMode.CONTAINS:
            needle = term.lower()
            self.tree = [node for node in self.page_nodes if needle in node.name.lower()]
            return True

        remote_mode = SearchMode.BEGINS if self.search_mode is SearchMode.BEGINS else SearchMode.CONTAINS
        base = term[: term.rfind("/") + 1] if remote_mode is SearchMode.BEGINS else ""
        sequence = self._next_sequence()
        with self._busy():
            data = self._api.search(self.selected_bucket, term, remote_mode.value)
            if not self._is_current(sequence):
                return False
            self.tree = build_tree(base, data or {})
            self.limit_reached = bool((data or {}).get("LimitReached"))
            return True
        return False

    def clear_search(self) -> bool:
        if self.search_mode is SearchMode.CONTAINS:
            self.search_term = ""
            self.tree = list(self.page_nodes)
            return True
        return self.open_prefix(self.current_prefix)

    # files and folders

    def open_file(self, node: S3Node, *, confirm: bool = True) -> bool:
        if not self.selected_bucket or node.is_dir:
            return False
        if confirm and not self._confirm_discard():
            return False
        sequence = self._next_sequence()
        with self._busy():
            self.editor.open(self.selected_bucket, node.full_key)
            if not self._is_current(sequence):
                return False
            self.selected_node = node
            return True
        return False

    def start_new_file(self, prefix: str | None = None) -> bool:
        if not self.selected_bucket or not self._confirm_discard():
            return False
        self.selected_node = None
        self.editor.start_new_file(self.selected_bucket, self.current_prefix if prefix is None else prefix)
        return True

    def save_file(self) -> bool:
        with self._busy():
            key = self.editor.save()
            if key is None:
                return False
            if self.selected_node is None or self.selected_node.full_key != key:
                self.selected_node = S3Node(name=_relative(key, self.current_prefix), full_key=key, is_dir=False)
            return True
        return False

    def create_folder(self, prefix: str | None = None) -> Optional[str]:
        if not self.selected_bucket:
            return None
        name = self._prompt("Folder name?")
        if not name or not name.strip():
            return None
        parent = self.current_prefix if prefix is None else prefix
        folder = f"{parent}{name.strip()}"
        if not folder.endswith("/"):
            folder += "/"
        with self._busy():
            self._api.create_folder(self.selected_bucket, folder)
            self.open_prefix(parent)
            return folder
        return None

    def delete_folder(self, node: S3Node) -> bool:
        if not self.selected_bucket or not self._confirm(f'Delete folder "{node.name}"?'):
            return False
        with self._busy():
            self._api.delete_folder(self.selected_bucket, node.full_key)
            self.open_prefix(self.current_prefix)
            return True
        return False

    def delete_file(self, node: S3Node) -> bool:
        if not self.selected_bucket or not self._confirm(f'Delete file "{node.name}"?'):
            return False
        with self._busy():
            self._api.delete_object(self.selected_bucket, node.full_key)
            self.open_prefix(self.current_prefix, confirm=False)
            return True
        return False

    # details

    def load_details(self, node: S3Node | None = None) -> dict[str, str]:
        """Summarize the bucket, a folder or a file for the inspector panel."""

        if not self.selected_bucket:
            return {}
        bucket = self.selected_bucket
        with self._busy():
            if node is None:
                info = self._api.bucket_meta(bucket)
                self.details = {
                    "Bucket": bucket,
                    "Region": info.get("LocationConstraint") or "-",
                    "Versioning": info.get("Status") or "Disabled",
                    "Objects": str(info.get("count") or 0),
                    "Last modified": format_last_modified(info.get("lastModified")),
                }
            elif node.is_dir:
                info = self._api.folder_meta(bucket, node.full_key)
                self.details = {
                    "Folder": node.full_key,
                    "Objects": str(info.get("count") or 0),
                    "Total size": format_size(info.get("totalSize")),
                    "Last modified": format_last_modified(info.get("lastModified")),
                }
            else:
                info = self._api.object_meta(bucket, node.full_key)
                self.details = {
                    "Key": node.full_key,
                    "Size": format_size(info.get("ContentLength")),
                    "Content type": info.get("ContentType") or "-",
                    "Storage class": info.get("StorageClass") or "STANDARD",
                    "ETag": info.get("ETag") or "-",
                    "Last modified": format_last_modified(info.get("LastModified")),
                }
        return self.details
