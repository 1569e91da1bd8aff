"""
Versioned, file-backed key/value store for data that must survive while
Supabase is unreachable: cached sessions, offline-created accounts, the
download outbox and the remembered email.

This module is the only place that reads or writes the local document.
Layout on disk:

    {"version": 1, "data": {"sessions": {...}, "localUsers": [...], ...}}

Documents without a "version" key are legacy, unversioned dumps of the old
key -> value layout and are migrated on load.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from apkportal.config import settings

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SESSIONS_KEY = "sessions"
LOCAL_USERS_KEY = "localUsers"
DOWNLOAD_QUEUE_KEY = "localDownloads"
DOWNLOAD_SEQ_KEY = "localDownloadsSeq"
DOWNLOAD_DEAD_LETTER_KEY = "localDownloadsDeadLetter"
REMEMBERED_EMAIL_KEY = "rememberedEmail"

# Download queue key used by the legacy layout, merged into DOWNLOAD_QUEUE_KEY
_LEGACY_DOWNLOAD_KEYS = ("downloads",)
# Single process-wide "current user"; it cannot be tied to a session
_LEGACY_USER_KEY = "user"


class LocalStore:
    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or settings.local_store_path)
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        """Hold across several calls to make them one atomic unit."""
        return self._lock

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._load()["data"].get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            doc = self._load()
            doc["data"][key] = value
            self._save(doc)

    def remove(self, key: str) -> None:
        with self._lock:
            doc = self._load()
            if key in doc["data"]:
                del doc["data"][key]
                self._save(doc)

    def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Read-modify-write of one key under the store lock. Returns the new value."""
        with self._lock:
            doc = self._load()
            value = fn(doc["data"].get(key, default))
            doc["data"][key] = value
            self._save(doc)
            return value

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return self._load()["data"]

    def clear(self) -> None:
        with self._lock:
            self._save({"version": SCHEMA_VERSION, "data": {}})

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {"version": SCHEMA_VERSION, "data": {}}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            # Keep the unreadable file around for inspection instead of overwriting it
            backup = self.path.with_suffix(self.path.suffix + ".corrupt")
            logger.error(f"Local store {self.path} unreadable ({e}); moved to {backup}")
            try:
                os.replace(self.path, backup)
            except OSError:
                pass
            return {"version": SCHEMA_VERSION, "data": {}}
        return self._migrate(raw)

    def _migrate(self, raw: Any) -> Dict[str, Any]:
        if not isinstance(raw, dict):
            logger.warning("Local store root is not an object, starting empty")
            return {"version": SCHEMA_VERSION, "data": {}}
        if "version" in raw and isinstance(raw.get("data"), dict):
            if raw["version"] > SCHEMA_VERSION:
                raise RuntimeError(
                    f"Local store {self.path} has schema version {raw['version']}, "
                    f"this build understands up to {SCHEMA_VERSION}"
                )
            return raw

        # Version 0: bare key -> value mapping
        data = dict(raw)
        data.pop(_LEGACY_USER_KEY, None)
        queue = list(data.get(DOWNLOAD_QUEUE_KEY) or [])
        for legacy_key in _LEGACY_DOWNLOAD_KEYS:
            legacy = data.pop(legacy_key, None)
            if isinstance(legacy, list):
                queue.extend(legacy)
        if queue:
            data[DOWNLOAD_QUEUE_KEY] = queue
        logger.info(f"Migrated local store {self.path} to schema version {SCHEMA_VERSION}")
        return {"version": SCHEMA_VERSION, "data": data}

    def _save(self, doc: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".local_store.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2, default=str)
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


_store: Optional[LocalStore] = None
_store_lock = threading.Lock()


def get_local_store() -> LocalStore:
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                _store = LocalStore()
    return _store
