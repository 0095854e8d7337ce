from __future__ import annotations
"""Application settings: server configuration and persisted client preferences."""

from dataclasses import asdict, dataclass
import json
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import SearchMode

DEFAULT_UPLOAD_LIMIT_MB = 25
DEFAULT_REGION = "us-east-1"


class ServerSettings(BaseSettings):
    """Configuration of the proxy API, read from the environment."""

    model_config = SettingsConfigDict(
        env_prefix="S3_EXPLORER_",
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    upload_limit_mb: int = DEFAULT_UPLOAD_LIMIT_MB
    default_region: str = Field(
        default=DEFAULT_REGION,
        validation_alias=AliasChoices("AWS_REGION", "AWS_DEFAULT_REGION"),
    )
    environment: str = Field(default="development", validation_alias="S3_EXPLORER_ENV")

    @field_validator("upload_limit_mb", mode="before")
    @classmethod
    def check_upload_limit(cls, value: Any) -> int:
        try:
            limit = int(value)
        except (TypeError, ValueError):
            return DEFAULT_UPLOAD_LIMIT_MB
        return limit if limit > 0 else DEFAULT_UPLOAD_LIMIT_MB

    @field_validator("default_region", mode="before")
    @classmethod
    def check_default_region(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) and value.strip() else DEFAULT_REGION

    @property
    def production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def upload_limit_bytes(self) -> int:
        return self.upload_limit_mb * 1024 * 1024


@dataclass
class AppSettings:
    """Simple container for persistent client preferences."""

    page_size: int = 100
    search_mode: str = SearchMode.BEGINS.value
    wrap: bool = False


class SettingsStorage:
    """JSON-backed persistence for :class:`AppSettings`."""

    def __init__(self, storage_path: str | Path | None = None):
        if storage_path is None:
            storage_path = Path.home() / ".s3_explorer_settings.json"
        self._path = Path(storage_path)

    def load(self) -> AppSettings:
        if not self._path.exists():
            return AppSettings()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return AppSettings()
        if not isinstance(data, dict):
            return AppSettings()
        page_size = data.get("page_size", AppSettings.page_size)
        try:
            page_value = int(page_size)
        except (TypeError, ValueError):
            page_value = AppSettings.page_size
        if page_value <= 0:
            page_value = AppSettings.page_size
        search_mode = data.get("search_mode")
        if search_mode not in {mode.value for mode in SearchMode}:
            search_mode = AppSettings.search_mode
        wrap = data.get("wrap")
        return AppSettings(
            page_size=page_value,
            search_mode=search_mode,
            wrap=wrap if isinstance(wrap, bool) else AppSettings.wrap,
        )

    def save(self, settings: AppSettings) -> None:
        payload = asdict(settings)
        payload["page_size"] = max(int(settings.page_size), 1)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError:
            # Persist best-effort; ignore filesystem issues.
            return
