"""
Background watcher for the OpenVPN status log.

A watchdog observer reports writes to the log; the loop thread debounces
them and runs one pass per quiet period: fetch a snapshot, diff it against
the previous one, publish the new snapshot and rate table, then hand
disconnected clients to the sink outside of any lock.
"""
import logging
import os
import queue
import threading
import time
from datetime import datetime
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from vpnstats.openvpn.rates import DisconnectEvent, SpeedStat, compute_rates
from vpnstats.openvpn.source import SnapshotSource, SnapshotUnavailableError
from vpnstats.openvpn.status_log import ClientSession, Snapshot

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 0.1
DEFAULT_HEALTH_INTERVAL = 5.0

Sink = Callable[[DisconnectEvent], None]

_WRITE = "write"
_ERROR = "error"
_CLOSE = "close"


class _StatusLogHandler(FileSystemEventHandler):
    """Forwards events touching the status log to the watcher's queue."""

    def __init__(self, watcher: "StatusLogWatcher"):
        self._watcher = watcher
        self._path = os.path.abspath(watcher.path)

    def _matches(self, event: FileSystemEvent) -> bool:
        if event.is_directory:
            return False
        paths = [event.src_path, getattr(event, "dest_path", "")]
        return any(p and os.path.abspath(os.fsdecode(p)) == self._path for p in paths)

    def on_modified(self, event):
        if self._matches(event):
            self._watcher.notify_write()

    def on_created(self, event):
        if self._matches(event):
            self._watcher.notify_write()

    def on_moved(self, event):
        if self._matches(event):
            self._watcher.notify_write()


class StatusLogWatcher:
    def __init__(
        self,
        source: SnapshotSource,
        sink: Optional[Sink] = None,
        debounce: float = DEFAULT_DEBOUNCE,
        health_interval: float = DEFAULT_HEALTH_INTERVAL,
        observer_factory: Callable = Observer,
    ):
        self.source = source
        self.path = source.path
        self.debounce = debounce
        self.health_interval = health_interval
        self._sink = sink
        self._observer_factory = observer_factory
        self._observer = None
        self._observer_lock = threading.Lock()

        self._events: "queue.Queue[tuple[str, object]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._timer: Optional[threading.Timer] = None
        self._timer_lock = threading.Lock()
        self._closed = threading.Event()

        # _pass_lock serializes passes; _state_lock only guards the swap.
        self._pass_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._snapshot: Optional[Snapshot] = None
        self._stats: list[SpeedStat] = []
        self._last_process = 0.0
        self.passes = 0

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> "StatusLogWatcher":
        """Schedule the filesystem watch and start the loop thread."""
        with self._observer_lock:
            self._schedule_observer()
        self._thread = threading.Thread(target=self._run, name="status-log-watcher", daemon=True)
        self._thread.start()
        logger.info("Watching OpenVPN status log %s", self.path)
        return self

    def close(self, timeout: float = 5.0) -> None:
        """Release the watch handle; the loop exits once the queue is closed."""
        if self._closed.is_set():
            return
        self._closed.set()
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self._stop_observer()
        self._events.put((_CLOSE, None))
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        logger.info("Stopped watching %s", self.path)

    def _schedule_observer(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        observer = self._observer_factory()
        observer.schedule(_StatusLogHandler(self), directory, recursive=False)
        observer.start()
        self._observer = observer

    def _stop_observer(self) -> None:
        with self._observer_lock:
            observer, self._observer = self._observer, None
        if observer is None:
            return
        try:
            observer.stop()
            observer.join()
        except RuntimeError as e:
            logger.warning("Error stopping filesystem observer: %s", e)

    # -- event channel -----------------------------------------------------

    def notify_write(self) -> None:
        if not self._closed.is_set():
            self._events.put((_WRITE, None))

    def notify_error(self, error: Exception) -> None:
        if not self._closed.is_set():
            self._events.put((_ERROR, error))

    def _run(self) -> None:
        while True:
            try:
                kind, payload = self._events.get(timeout=self.health_interval)
            except queue.Empty:
                self._check_observer()
                continue
            if kind == _CLOSE:
                return
            if kind == _WRITE:
                self._restart_timer()
            elif kind == _ERROR:
                logger.error("Status log watch error: %s", payload)

    def _check_observer(self) -> None:
        # close() swaps the observer out under the same lock.
        with self._observer_lock:
            observer = self._observer
            if self._closed.is_set() or observer is None or observer.is_alive():
                return
            logger.error("Filesystem observer for %s stopped, rescheduling", self.path)
            try:
                self._schedule_observer()
            except OSError as e:
                self.notify_error(e)

    def _restart_timer(self) -> None:
        with self._timer_lock:
            if self._closed.is_set():
                return
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce, self._process_file)
            self._timer.daemon = True
            self._timer.start()

    def _process_file(self) -> None:
        if self._closed.is_set():
            return
        if time.monotonic() - self._last_process < self.debounce:
            return
        self.refresh()

    # -- reprocessing ------------------------------------------------------

    def refresh(self) -> bool:
        """
        Run one pass synchronously. Returns False when the log could not be
        read and the pass was skipped.
        """
        with self._pass_lock:
            try:
                snapshot = self.source.fetch()
            except SnapshotUnavailableError as e:
                logger.error("%s; skipping pass", e)
                self._last_process = time.monotonic()
                return False

            result = compute_rates(snapshot, self._snapshot, self._stats)
            with self._state_lock:
                self._snapshot = snapshot
                self._stats = result.stats
            self._last_process = time.monotonic()
            self.passes += 1

        if result.disconnected:
            self.report_disconnects(result.disconnected)
        return True

    def report_disconnects(self, sessions: list[ClientSession]) -> None:
        """Send each session to the sink as disconnected now; never raises."""
        if self._sink is None:
            return
        now = datetime.now()
        for session in sessions:
            logger.info("Client %s disconnected", session.common_name)
            try:
                self._sink(DisconnectEvent(session=session, connected_until=now))
            except Exception:
                logger.exception("Disconnect sink failed for %s", session.common_name)

    # -- readers -----------------------------------------------------------

    def get_statistics(self) -> list[SpeedStat]:
        """Copy of the current rate table."""
        with self._state_lock:
            return list(self._stats)

    def get_snapshot(self) -> Optional[Snapshot]:
        with self._state_lock:
            return self._snapshot

    @property
    def last_update(self) -> Optional[datetime]:
        snapshot = self.get_snapshot()
        return snapshot.updated_at if snapshot else None
