"""Periodic task runner used for the reconcile and query cadences."""

from __future__ import annotations

import threading
from typing import Callable

from loguru import logger


class IntervalTimer:
    """Run *func* every *interval* seconds on a daemon thread.

    The first run happens immediately on :meth:`start`. An exception raised by
    *func* is logged and the timer keeps going; the next run is scheduled
    relative to the end of the previous one.
    """

    def __init__(self, name: str, interval: float, func: Callable[[], None]) -> None:
        self.name = name
        self.interval = interval
        self.func = func
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=f"timer-{self.name}", daemon=True)
        self._thread.start()
        logger.info(f"Timer {self.name} started (every {self.interval:g}s)")

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop the timer and wait up to *timeout* seconds for a running cycle."""
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(f"Timer {self.name}: cycle still running after {timeout}s")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def run_once(self) -> None:
        try:
            self.func()
        except Exception:
            logger.exception(f"Timer {self.name}: cycle failed")

    def _run(self) -> None:
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self.interval)
