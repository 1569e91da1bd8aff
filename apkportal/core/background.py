"""Runner for best-effort side calls (activity log, last_active touch) with bounded retry."""
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from apkportal.config import settings

logger = logging.getLogger(__name__)


class BackgroundRunner:
    def __init__(
        self,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        max_workers: Optional[int] = None,
        inline: bool = False,
    ):
        self.max_retries = settings.background_max_retries if max_retries is None else max_retries
        self.retry_delay = settings.background_retry_delay if retry_delay is None else retry_delay
        self.inline = inline
        self._executor = None
        if not inline:
            self._executor = ThreadPoolExecutor(
                max_workers=max_workers or settings.background_workers,
                thread_name_prefix="apkportal-bg",
            )

    def submit(self, fn: Callable[..., Any], *args, description: str = "", **kwargs) -> Optional[Future]:
        """
        Schedule fn; failures are retried up to max_retries times, then logged and dropped.

        Delivery is at-least-once: a call whose response was lost is run again,
        so fn must be safe to repeat (activity rows are keyed on client_event_id).
        """
        label = description or getattr(fn, "__name__", "task")
        if self.inline:
            self._run(label, fn, args, kwargs)
            return None
        return self._executor.submit(self._run, label, fn, args, kwargs)

    def _run(self, label: str, fn: Callable[..., Any], args, kwargs) -> bool:
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                fn(*args, **kwargs)
                return True
            except Exception as e:
                if attempt == attempts:
                    logger.error(f"Background task '{label}' failed after {attempts} attempt(s): {e}")
                    return False
                delay = self.retry_delay * (2 ** (attempt - 1))
                logger.warning(f"Background task '{label}' failed (attempt {attempt}/{attempts}): {e}; retrying in {delay:.1f}s")
                if delay > 0:
                    time.sleep(delay)
        return False

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)


_runner: Optional[BackgroundRunner] = None
_runner_lock = threading.Lock()


def get_background_runner() -> BackgroundRunner:
    global _runner
    if _runner is None:
        with _runner_lock:
            if _runner is None:
                _runner = BackgroundRunner()
    return _runner


def reset_background_runner(runner: Optional[BackgroundRunner] = None) -> None:
    global _runner
    with _runner_lock:
        previous = _runner
        _runner = runner
    if previous is not None and previous is not runner:
        previous.shutdown(wait=False)
