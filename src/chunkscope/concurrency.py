"""
Locking and background-sweep primitives shared by the caches and the file router.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable

from .observability import get_logger

logger = get_logger(__name__)


class ReadWriteLock:
    """
    Many concurrent readers or one writer.
    Waiting writers block new readers so a steady read load cannot starve a sweep.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self):
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self):
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self):
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self):
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class PeriodicSweeper:
    """Runs `task` every `interval_s` seconds on a daemon thread until stopped."""

    def __init__(self, name: str, interval_s: float, task: Callable[[], object]):
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self.name = name
        self.interval_s = float(interval_s)
        self._task = task
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> "PeriodicSweeper":
        with self._lock:
            if self._thread is not None or self._stop_event.is_set():
                return self
            self._thread = threading.Thread(
                target=self._run,
                name=f"sweeper-{self.name}",
                daemon=True,
            )
            self._thread.start()
        return self

    def _run(self):
        while not self._stop_event.wait(self.interval_s):
            try:
                self._task()
            except Exception as exc:
                logger.error("sweep_failed", component=self.name, error=str(exc))

    def stop(self, timeout: float | None = 5.0):
        """Signals the loop and joins it. Safe to call repeatedly."""
        self._stop_event.set()
        with self._lock:
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
