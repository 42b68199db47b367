"""
Owner of the status log watcher.

One registry is created at startup and passed to whoever needs statistics.
``start()`` may be called from any number of places: only the first call
builds and starts the watcher, later calls get the same instance back (or
the error the first call failed with).
"""
import logging
import threading
from typing import Callable, Optional

from watchdog.observers import Observer

from vpnstats.openvpn.rates import SpeedStat
from vpnstats.openvpn.source import Opener, SnapshotSource
from vpnstats.openvpn.status_log import Snapshot
from vpnstats.openvpn.watcher import DEFAULT_DEBOUNCE, DEFAULT_HEALTH_INTERVAL, Sink, StatusLogWatcher

logger = logging.getLogger(__name__)


class StatsRegistry:
    def __init__(
        self,
        path: str,
        sink: Optional[Sink] = None,
        debounce: float = DEFAULT_DEBOUNCE,
        health_interval: float = DEFAULT_HEALTH_INTERVAL,
        opener: Optional[Opener] = None,
        observer_factory: Callable = Observer,
    ):
        self.path = path
        self.source = SnapshotSource(path, opener=opener)
        self._sink = sink
        self._debounce = debounce
        self._health_interval = health_interval
        self._observer_factory = observer_factory

        self._init_lock = threading.Lock()
        self._initialized = False
        self._watcher: Optional[StatusLogWatcher] = None
        self._init_error: Optional[Exception] = None

    def start(self) -> StatusLogWatcher:
        """Start watching exactly once. Raises the first call's error on every call."""
        with self._init_lock:
            if not self._initialized:
                self._initialized = True
                try:
                    self._watcher = self._build()
                except Exception as e:
                    logger.error("Cannot start status log watcher for %s: %s", self.path, e)
                    self._init_error = e
            if self._init_error is not None:
                raise self._init_error
            return self._watcher

    def _build(self) -> StatusLogWatcher:
        watcher = StatusLogWatcher(
            self.source,
            sink=self._sink,
            debounce=self._debounce,
            health_interval=self._health_interval,
            observer_factory=self._observer_factory,
        )
        # Seed with the current contents so the first write already has a baseline.
        watcher.refresh()
        return watcher.start()

    @property
    def watcher(self) -> Optional[StatusLogWatcher]:
        return self._watcher

    def get_statistics(self) -> list[SpeedStat]:
        if self._watcher is None:
            return []
        return self._watcher.get_statistics()

    def get_connections(self) -> Snapshot:
        """
        Current snapshot. Before the watcher is running this reads the log
        directly and may raise SnapshotUnavailableError.
        """
        if self._watcher is not None:
            snapshot = self._watcher.get_snapshot()
            if snapshot is not None:
                return snapshot
        return self.source.fetch()

    def close(self) -> None:
        with self._init_lock:
            watcher = self._watcher
        if watcher is not None:
            watcher.close()
