"""Background thread that periodically pushes the download outbox to Supabase."""
import logging
import threading
from typing import Callable, Optional

from apkportal.config import settings
from apkportal.modules.downloads.schemas import SyncResponse
from apkportal.modules.downloads.service import DownloadService

logger = logging.getLogger(__name__)


def _default_service() -> DownloadService:
    from apkportal.database.supabase_client import get_service_supabase
    from apkportal.modules.downloads.outbox import get_download_outbox
    return DownloadService(get_service_supabase(), get_download_outbox())


class OutboxFlusher:
    """
    Usage:
        flusher = OutboxFlusher()
        flusher.start()     # periodic sync in a daemon thread
        flusher.sync_now()  # immediate pass
        flusher.stop()
    """

    def __init__(
        self,
        service_factory: Callable[[], DownloadService] = _default_service,
        interval: Optional[float] = None,
    ):
        self.service_factory = service_factory
        self.interval = settings.outbox_flush_interval if interval is None else interval
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self.last_result: Optional[SyncResponse] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="OutboxFlusher")
        self._thread.start()
        logger.info(f"Outbox flusher started (interval {self.interval}s)")

    def stop(self, timeout: float = 10.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Outbox flusher stopped")

    def sync_now(self) -> Optional[SyncResponse]:
        try:
            service = self.service_factory()
            self.last_result = service.sync()
            return self.last_result
        except Exception as e:
            logger.error(f"Outbox sync error: {e}")
            return None

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.sync_now()
            # Per-entry backoff lives in the outbox; this is only the polling cadence
            if self._stop.wait(timeout=self.interval):
                break
