"""Read the status log from disk and hand it to the parser."""
import logging
from typing import Callable, ContextManager, IO

from vpnstats.openvpn.status_log import Snapshot, parse_status_log

logger = logging.getLogger(__name__)

Opener = Callable[[str], ContextManager[IO]]


class SnapshotUnavailableError(RuntimeError):
    """The status log could not be opened or read."""


def _open_text(path: str):
    return open(path, "r", encoding="utf-8", errors="replace")


class SnapshotSource:
    """
    Opens the status log on every fetch; the daemon replaces the file
    wholesale, so handles are never kept between passes.
    """

    def __init__(self, path: str, opener: Opener | None = None):
        self.path = path
        self._opener = opener or _open_text

    def fetch(self) -> Snapshot:
        """Parse the current log. Raises SnapshotUnavailableError if it cannot be read."""
        try:
            with self._opener(self.path) as f:
                return parse_status_log(f)
        except OSError as e:
            raise SnapshotUnavailableError(f"Cannot read status log {self.path}: {e}") from e
