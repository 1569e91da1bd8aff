"""
Outbox for download events that could not be written to Supabase.

Entries are appended with a monotonically increasing sequence number and an
idempotency key, and are only removed once the remote write for that exact
entry succeeded. Re-sending an entry reuses its key, so the remote side can
ignore duplicates (downloads.client_event_id is unique).

An entry the backend rejects outright (see core.errors.is_permanent_error)
is moved to a dead-letter list instead of being retried.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from apkportal.config import settings
from apkportal.core.errors import error_message, is_permanent_error
from apkportal.database.local_store import (
    DOWNLOAD_DEAD_LETTER_KEY, DOWNLOAD_QUEUE_KEY, DOWNLOAD_SEQ_KEY, LocalStore,
)

logger = logging.getLogger(__name__)

# Field names used by older copies of the download tracker
_LEGACY_FIELD_NAMES = {
    "user_email": "email",
    "version_id": "app_version_id",
}
_LOCAL_ONLY_FIELDS = ("id", "is_synced", "created_at")


@dataclass
class FlushResult:
    synced: int = 0
    failed: int = 0
    deferred: int = 0
    remaining: int = 0
    dead_lettered: int = 0
    in_progress: bool = False
    synced_keys: List[str] = field(default_factory=list)


class DownloadOutbox:
    def __init__(
        self,
        store: LocalStore,
        max_entries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.max_entries = settings.outbox_max_entries if max_entries is None else max_entries
        self.backoff_base = settings.outbox_backoff_base if backoff_base is None else backoff_base
        self.backoff_max = settings.outbox_backoff_max if backoff_max is None else backoff_max
        self.clock = clock
        self._flush_lock = threading.Lock()

    def _next_seq(self) -> int:
        return self.store.update(DOWNLOAD_SEQ_KEY, lambda seq: (seq or 0) + 1, default=0)

    def _new_entry(self, payload: Dict[str, Any], table: str, idempotency_key: Optional[str] = None,
                   created_at: Optional[str] = None, local_id: Optional[str] = None) -> Dict[str, Any]:
        seq = self._next_seq()
        return {
            "seq": seq,
            "local_id": local_id or f"local-{int(self.clock() * 1000)}-{seq}",
            "idempotency_key": idempotency_key or str(uuid.uuid4()),
            "table": table,
            "payload": payload,
            "attempts": 0,
            "last_error": None,
            "next_attempt_at": 0,
            "created_at": created_at or datetime.now(timezone.utc).isoformat(),
        }

    def append(self, payload: Dict[str, Any], table: str = "downloads",
               idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        """Queue one event. Returns the stored entry."""
        with self.store.lock:
            entry = self._new_entry(dict(payload), table, idempotency_key)

            def add(entries):
                entries = list(entries or [])
                entries.append(entry)
                overflow = len(entries) - self.max_entries
                if self.max_entries and overflow > 0:
                    dropped = entries[:overflow]
                    logger.error(
                        f"Download outbox over capacity ({self.max_entries}); dropping "
                        f"{overflow} oldest event(s): {[e.get('local_id') for e in dropped]}"
                    )
                    entries = entries[overflow:]
                return entries

            self.store.update(DOWNLOAD_QUEUE_KEY, add, default=[])
        logger.info(f"Queued {table} event {entry['local_id']} for later sync")
        return entry

    def entries(self) -> List[Dict[str, Any]]:
        """All queued entries in sequence order, upgrading legacy entries in place."""
        with self.store.lock:
            raw = self.store.get(DOWNLOAD_QUEUE_KEY, []) or []
            if any("idempotency_key" not in e for e in raw):
                raw = [e if "idempotency_key" in e else self._upgrade_legacy(e) for e in raw]
                self.store.set(DOWNLOAD_QUEUE_KEY, raw)
            return sorted(raw, key=lambda e: e["seq"])

    def _upgrade_legacy(self, legacy: Dict[str, Any]) -> Dict[str, Any]:
        payload = {}
        for key, value in legacy.items():
            if key in _LOCAL_ONLY_FIELDS:
                continue
            payload[_LEGACY_FIELD_NAMES.get(key, key)] = value
        legacy_id = legacy.get("id")
        return self._new_entry(
            payload,
            "downloads",
            created_at=legacy.get("created_at"),
            local_id=legacy_id if isinstance(legacy_id, str) and legacy_id.startswith("local-") else None,
        )

    def pending_count(self) -> int:
        return len(self.entries())

    def _remove(self, idempotency_key: str) -> None:
        self.store.update(
            DOWNLOAD_QUEUE_KEY,
            lambda entries: [e for e in (entries or []) if e.get("idempotency_key") != idempotency_key],
            default=[],
        )

    def _mark_failed(self, idempotency_key: str, error: str, now: float) -> None:
        def mark(entries):
            updated = []
            for e in entries or []:
                if e.get("idempotency_key") == idempotency_key:
                    e = dict(e)
                    e["attempts"] = e.get("attempts", 0) + 1
                    e["last_error"] = error
                    e["next_attempt_at"] = now + self.backoff_delay(e["attempts"])
                updated.append(e)
            return updated

        self.store.update(DOWNLOAD_QUEUE_KEY, mark, default=[])

    def _dead_letter(self, entry: Dict[str, Any], error: str) -> None:
        with self.store.lock:
            self._remove(entry["idempotency_key"])
            dead = dict(entry)
            dead["attempts"] = entry.get("attempts", 0) + 1
            dead["last_error"] = error
            dead["dead_lettered_at"] = datetime.now(timezone.utc).isoformat()

            def add(entries):
                entries = list(entries or [])
                entries.append(dead)
                if self.max_entries and len(entries) > self.max_entries:
                    entries = entries[len(entries) - self.max_entries:]
                return entries

            self.store.update(DOWNLOAD_DEAD_LETTER_KEY, add, default=[])

    def dead_letters(self) -> List[Dict[str, Any]]:
        """Entries the backend rejected, oldest first"""
        return list(self.store.get(DOWNLOAD_DEAD_LETTER_KEY, []) or [])

    def backoff_delay(self, attempts: int) -> float:
        if attempts <= 0:
            return 0
        return min(self.backoff_base * (2 ** (attempts - 1)), self.backoff_max)

    def flush(self, send: Callable[[Dict[str, Any]], Any], force: bool = False) -> FlushResult:
        """
        Send due entries in sequence order. An entry leaves the outbox only when
        send() returned without raising for it, or moves to the dead-letter
        list when send() raised a permanent error. Only one flush runs at a time;
        a concurrent call returns immediately with in_progress=True.
        """
        if not self._flush_lock.acquire(blocking=False):
            return FlushResult(in_progress=True, remaining=self.pending_count())
        try:
            result = FlushResult()
            now = self.clock()
            for entry in self.entries():
                if not force and entry.get("next_attempt_at", 0) > now:
                    result.deferred += 1
                    continue
                try:
                    send(entry)
                except Exception as e:
                    if is_permanent_error(e):
                        logger.error(
                            f"Sync of {entry['local_id']} rejected by the backend, "
                            f"moving it to the dead-letter list: {error_message(e)}"
                        )
                        self._dead_letter(entry, error_message(e))
                        result.dead_lettered += 1
                        continue
                    logger.warning(f"Sync of {entry['local_id']} failed (attempt {entry.get('attempts', 0) + 1}): {e}")
                    self._mark_failed(entry["idempotency_key"], str(e), now)
                    result.failed += 1
                    continue
                self._remove(entry["idempotency_key"])
                result.synced += 1
                result.synced_keys.append(entry["idempotency_key"])
            result.remaining = self.pending_count()
            if result.synced or result.failed or result.dead_lettered:
                logger.info(
                    f"Outbox flush: {result.synced} synced, {result.failed} failed, "
                    f"{result.dead_lettered} dead-lettered, "
                    f"{result.deferred} deferred, {result.remaining} remaining"
                )
            return result
        finally:
            self._flush_lock.release()


_outbox: Optional[DownloadOutbox] = None
_outbox_lock = threading.Lock()


def get_download_outbox() -> DownloadOutbox:
    """Process-wide outbox so every caller shares one flush lock."""
    global _outbox
    if _outbox is None:
        with _outbox_lock:
            if _outbox is None:
                from apkportal.database.local_store import get_local_store
                _outbox = DownloadOutbox(get_local_store())
    return _outbox
