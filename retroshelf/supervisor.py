# retroshelf/supervisor.py
from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, Optional

import psutil

from .models import LaunchPlan, MediaItem

log = logging.getLogger(__name__)

# Sessions this short still count as a play but add no time.
MIN_PLAY_SECONDS = 5.0

STARTUP_POLL_SECONDS = 1.0
EXIT_POLL_SECONDS = 2.0
STARTUP_TIMEOUT_SECONDS = 180.0
HANDLE_POLL_SECONDS = 0.5


@dataclass
class SessionOutcome:
    elapsed: float
    credited: float          # seconds added to total_play_time


@dataclass
class LaunchAttempt:
    """One launch of one item. Owns its cancellation signal."""
    item: MediaItem
    cancel_event: threading.Event = field(default_factory=threading.Event)
    done: threading.Event = field(default_factory=threading.Event)
    plan: Optional[LaunchPlan] = None
    process: Optional[subprocess.Popen] = None
    started_at: Optional[float] = None
    outcome: Optional[SessionOutcome] = None
    error: Optional[str] = None

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self.done.wait(timeout)

# ──────────────────────────────────────────────────────────────────────────────
# Handle-based tracking
# ──────────────────────────────────────────────────────────────────────────────

def wait_for_process(process, cancel_event: threading.Event,
                     poll_interval: float = HANDLE_POLL_SECONDS) -> bool:
    """Block until `process` exits or the attempt is cancelled. True if it exited."""
    while not cancel_event.is_set():
        try:
            process.wait(timeout=poll_interval)
            return True
        except subprocess.TimeoutExpired:
            continue
    return False

# ──────────────────────────────────────────────────────────────────────────────
# Name-watch tracking
# ──────────────────────────────────────────────────────────────────────────────

class WatchResult(str, Enum):
    FOUND = "found"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


def _clean_name(name: str) -> str:
    return os.path.splitext(os.path.basename((name or "").strip()))[0].lower()


def running_process_names() -> Iterable[str]:
    for proc in psutil.process_iter(["name"]):
        name = proc.info.get("name")
        if name:
            yield name


class ProcessWatcher:
    """Poll for a process by name (for games started behind a store client)."""

    def __init__(
        self,
        lister: Callable[[], Iterable[str]] = running_process_names,
        startup_interval: float = STARTUP_POLL_SECONDS,
        exit_interval: float = EXIT_POLL_SECONDS,
        startup_timeout: float = STARTUP_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._lister = lister
        self.startup_interval = startup_interval
        self.exit_interval = exit_interval
        self.startup_timeout = startup_timeout
        self._clock = clock

    def is_running(self, name: str) -> bool:
        wanted = _clean_name(name)
        if not wanted:
            return False
        try:
            return any(_clean_name(n) == wanted for n in self._lister())
        except psutil.Error as e:
            log.warning("Process listing failed: %s", e)
            return False

    def wait_for_start(self, name: str, cancel_event: threading.Event) -> WatchResult:
        deadline = self._clock() + self.startup_timeout
        while self._clock() < deadline:
            if cancel_event.is_set():
                return WatchResult.CANCELLED
            if self.is_running(name):
                log.info("Process %s found, tracking", name)
                return WatchResult.FOUND
            if cancel_event.wait(self.startup_interval):
                return WatchResult.CANCELLED
        log.info("Process %s did not appear within %.0fs", name, self.startup_timeout)
        return WatchResult.TIMEOUT

    def wait_for_exit(self, name: str, cancel_event: threading.Event) -> bool:
        """True once the process is gone, False if cancelled first."""
        while True:
            if cancel_event.wait(self.exit_interval):
                return False
            if not self.is_running(name):
                log.info("Process %s exited", name)
                return True

# ──────────────────────────────────────────────────────────────────────────────
# Session evaluation
# ──────────────────────────────────────────────────────────────────────────────

class StatsWriter:
    """
    Single-writer context for play statistics.

    Every mutation runs on one dedicated worker thread, so launches finishing
    at the same time never update an item concurrently.
    """

    def __init__(self):
        self._thread_id: Optional[int] = None
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="retroshelf-stats",
            initializer=self._remember_thread,
        )

    def _remember_thread(self) -> None:
        self._thread_id = threading.get_ident()

    def submit(self, fn, *args, **kwargs):
        return self._executor.submit(fn, *args, **kwargs)

    def run(self, fn, *args, **kwargs):
        if threading.get_ident() == self._thread_id:
            return fn(*args, **kwargs)
        return self.submit(fn, *args, **kwargs).result()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


def apply_session(item: MediaItem, elapsed: float, now: Optional[datetime] = None) -> SessionOutcome:
    credited = elapsed if elapsed > MIN_PLAY_SECONDS else 0.0
    item.last_played = now or datetime.now()
    item.play_count += 1
    item.total_play_time += credited
    return SessionOutcome(elapsed=elapsed, credited=credited)


def evaluate_session(
    item: MediaItem,
    elapsed: Optional[float],
    writer: StatsWriter,
    on_library_changed: Optional[Callable[[MediaItem], None]] = None,
) -> Optional[SessionOutcome]:
    if elapsed is None:
        log.info("No session recorded for %s", item.title)
        return None

    elapsed = max(0.0, elapsed)
    log.info("Session for %s ended after %.2fs", item.title, elapsed)
    outcome = writer.run(apply_session, item, elapsed)
    if outcome.credited == 0.0:
        log.info("Session too short, counted without play time")

    if on_library_changed is not None:
        try:
            on_library_changed(item)
        except Exception:
            log.exception("Library change callback failed")
    return outcome
