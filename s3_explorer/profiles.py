from __future__ import annotations
"""Connection profile models and persistence."""
from dataclasses import dataclass
import json
import logging
from pathlib import Path
from typing import Callable, Optional
import uuid

import keyring
from keyring.errors import KeyringError

from .models import ConnectionDescriptor

LOGGER = logging.getLogger(__name__)


@dataclass
class Connection:
    """Represents a saved S3 connection."""

    id: str
    name: str
    endpoint: str
    region: str
    access_key_id: str
    secret_access_key: str
    session_token: Optional[str] = None

    def descriptor(self) -> ConnectionDescriptor:
        return ConnectionDescriptor(
            region=self.region,
            endpoint=self.endpoint,
            access_key_id=self.access_key_id,
            secret_access_key=self.secret_access_key,
            session_token=self.session_token or None,
        )


CONNECTION_PRESETS: dict[str, dict[str, str]] = {
    "AWS Key and Secret": {
        "endpoint": "https://s3.amazonaws.com",
        "region": "us-east-1",
        "access_key_id": "",
        "secret_access_key": "",
    },
    "LocalStack": {
        "endpoint": "http://localhost:4566",
        "region": "us-east-1",
        "access_key_id": "testuser",
        "secret_access_key": "testsecret",
    },
}


def connection_from_preset(preset: str, name: str | None = None) -> Connection:
    values = CONNECTION_PRESETS[preset]
    return Connection(id="", name=name or preset, **values)


def generate_unique_name(name: str, existing: set[str]) -> str:
    base = name.strip() or "connection"
    if base not in existing:
        return base
    suffix = 2
    while f"{base}-{suffix}" in existing:
        suffix += 1
    return f"{base}-{suffix}"


class KeychainStore:
    """Encapsulates OS keychain access for secrets."""

    def __init__(self, service_name: str = "s3-explorer"):
        self._service_name = service_name

    def get_secret(self, entry_name: str) -> str:
        if not entry_name:
            return ""
        try:
            return keyring.get_password(self._service_name, entry_name) or ""
        except KeyringError:
            LOGGER.warning("Keychain lookup failed for '%s'", entry_name)
            return ""

    def set_secret(self, entry_name: str, secret: str) -> None:
        if not entry_name:
            return
        if not secret:
            self.delete_secret(entry_name)
            return
        try:
            keyring.set_password(self._service_name, entry_name, secret)
        except KeyringError:
            LOGGER.warning("Keychain write failed for '%s'", entry_name)

    def delete_secret(self, entry_name: str) -> None:
        if not entry_name:
            return
        try:
            keyring.delete_password(self._service_name, entry_name)
        except KeyringError:
            return


def _secret_entry(connection_id: str) -> str:
    return f"{connection_id}:secret_access_key"


def _token_entry(connection_id: str) -> str:
    return f"{connection_id}:session_token"


class ConnectionStorage:
    """JSON-backed store for connections; secrets are kept in the keychain."""

    def __init__(self, storage_path: str | Path | None = None, keychain: KeychainStore | None = None):
        if storage_path is None:
            storage_path = Path.home() / ".s3_explorer_connections.json"
        self._path = Path(storage_path)
        self._keychain = keychain or KeychainStore()

    def load(self) -> tuple[list[Connection], Optional[str]]:
        if not self._path.exists():
            return [], None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            LOGGER.warning("Ignoring unreadable connections file %s", self._path)
            return [], None
        if not isinstance(data, dict):
            return [], None

        connections: list[Connection] = []
        saw_plaintext = False
        for entry in data.get("connections") or []:
            try:
                connection_id = entry["id"]
                secret = entry.get("secret_access_key", "")
                token = entry.get("session_token") or ""
                if secret or token:
                    saw_plaintext = True
                    self._keychain.set_secret(_secret_entry(connection_id), secret)
                    self._keychain.set_secret(_token_entry(connection_id), token)
                else:
                    secret = self._keychain.get_secret(_secret_entry(connection_id))
                    token = self._keychain.get_secret(_token_entry(connection_id))
                connections.append(
                    Connection(
                        id=connection_id,
                        name=entry["name"],
                        endpoint=entry.get("endpoint", ""),
                        region=entry.get("region", ""),
                        access_key_id=entry.get("access_key_id", ""),
                        secret_access_key=secret,
                        session_token=token or None,
                    )
                )
            except (KeyError, TypeError, AttributeError):
                continue

        selected_id = data.get("selected_id")
        if selected_id not in {connection.id for connection in connections}:
            selected_id = None
        if saw_plaintext:
            LOGGER.info("Moved plaintext connection secrets into the keychain")
            self._write_data(connections, selected_id)
        return connections, selected_id

    def save(self, connections: list[Connection], selected_id: Optional[str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        for connection in connections:
            self._keychain.set_secret(_secret_entry(connection.id), connection.secret_access_key)
            self._keychain.set_secret(_token_entry(connection.id), connection.session_token or "")
        current_ids = {connection.id for connection in connections}
        for stale_id in self._load_ids() - current_ids:
            self._keychain.delete_secret(_secret_entry(stale_id))
            self._keychain.delete_secret(_token_entry(stale_id))
        self._write_data(connections, selected_id)

    def _load_ids(self) -> set[str]:
        if not self._path.exists():
            return set()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return set()
        if not isinstance(data, dict):
            return set()
        ids = set()
        for entry in data.get("connections") or []:
            connection_id = entry.get("id") if isinstance(entry, dict) else None
            if isinstance(connection_id, str) and connection_id:
                ids.add(connection_id)
        return ids

    def _write_data(self, connections: list[Connection], selected_id: Optional[str]) -> None:
        data = {
            "connections": [
                {
                    "id": connection.id,
                    "name": connection.name,
                    "endpoint": connection.endpoint,
                    "region": connection.region,
                    "access_key_id": connection.access_key_id,
                }
                for connection in connections
            ],
            "selected_id": selected_id,
        }
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")


@dataclass
class SessionState:
    """Per-process stand-in for the active session token and its first-use flag."""

    token: Optional[str] = None
    initialized: bool = False

    def activate(self, descriptor: ConnectionDescriptor | None) -> bool:
        """Install ``descriptor`` as the active session.

        Returns ``True`` the first time a session is activated so callers can
        perform their one-shot full reload.
        """
        self.token = descriptor.to_header() if descriptor is not None else None
        if self.initialized:
            return False
        self.initialized = True
        return True

    def clear(self) -> None:
        self.token = None


class ConnectionRegistry:
    """In-memory list of connections with a single selected entry."""

    def __init__(self, storage: ConnectionStorage, session: SessionState | None = None):
        self._storage = storage
        self.session = session or SessionState()
        self._listeners: list[Callable[[Optional[Connection]], None]] = []
        self._connections, self._selected_id = storage.load()
        selected = self.selected
        if selected is not None:
            self.session.activate(selected.descriptor())

    def list(self) -> list[Connection]:
        return list(self._connections)

    def get(self, connection_id: str) -> Optional[Connection]:
        for connection in self._connections:
            if connection.id == connection_id:
                return connection
        return None

    @property
    def selected(self) -> Optional[Connection]:
        if not self._selected_id:
            return None
        return self.get(self._selected_id)

    def subscribe(self, listener: Callable[[Optional[Connection]], None]) -> None:
        self._listeners.append(listener)

    def add(self, connection: Connection) -> Connection:
        existing = {item.name for item in self._connections}
        connection.id = str(uuid.uuid4())
        connection.name = generate_unique_name(connection.name, existing)
        self._connections.append(connection)
        LOGGER.info("Added connection '%s'", connection.name)
        self.select(connection.id)
        return connection

    def update(self, connection: Connection) -> None:
        for index, item in enumerate(self._connections):
            if item.id == connection.id:
                break
        else:
            raise KeyError(connection.id)
        others = {item.name for item in self._connections if item.id != connection.id}
        connection.name = generate_unique_name(connection.name, others)
        self._connections[index] = connection
        if connection.id == self._selected_id:
            self._activate(connection)
        else:
            self._persist()

    def remove(self, connection_id: str) -> None:
        self._connections = [item for item in self._connections if item.id != connection_id]
        if connection_id == self._selected_id:
            self._selected_id = None
            self._activate(None)
        else:
            self._persist()

    def select(self, connection_id: str) -> Connection:
        connection = self.get(connection_id)
        if connection is None:
            raise KeyError(connection_id)
        self._selected_id = connection.id
        self._activate(connection)
        return connection

    def _activate(self, connection: Optional[Connection]) -> None:
        self._persist()
        if connection is None:
            self.session.clear()
        else:
            self.session.activate(connection.descriptor())
        for listener in list(self._listeners):
            listener(connection)

    def _persist(self) -> None:
        self._storage.save(self._connections, self._selected_id)
