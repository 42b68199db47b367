"""
Per-client transmit/receive rates computed by diffing two snapshots.
Also decides which clients disconnected between them.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from vpnstats.openvpn.status_log import ClientSession, Snapshot

MIN_ELAPSED_SECONDS = 1.0


@dataclass(frozen=True)
class SpeedStat:
    common_name: str
    tx: float  # bytes/sec sent to the client
    rx: float  # bytes/sec received from the client


@dataclass(frozen=True)
class DisconnectEvent:
    session: ClientSession
    connected_until: datetime


@dataclass
class RateResult:
    stats: list[SpeedStat] = field(default_factory=list)
    disconnected: list[ClientSession] = field(default_factory=list)


def elapsed_seconds(previous: Snapshot, current: Snapshot) -> float:
    """Seconds between two log timestamps, at least MIN_ELAPSED_SECONDS."""
    seconds = (current.updated_at - previous.updated_at).total_seconds()
    if seconds <= 0:
        return MIN_ELAPSED_SECONDS
    return seconds


def _rate(new: int, old: Optional[int], seconds: float) -> float:
    # A counter that went backwards was reset; count it like a new connection.
    if old is None or new < old:
        return new / seconds
    return (new - old) / seconds


def compute_rates(
    current: Snapshot,
    previous: Optional[Snapshot],
    stats: list[SpeedStat],
) -> RateResult:
    """
    Diff ``current`` against ``previous`` and build the next rate table.

    The returned table holds exactly the common names of ``current``:
    entries already in ``stats`` keep their position, new clients are
    appended in log order. Clients of ``previous`` missing from ``current``
    come back in ``disconnected`` with their last known counters.
    On the first observation (``previous`` is None) nothing is computed.
    """
    if previous is None:
        return RateResult()

    seconds = elapsed_seconds(previous, current)
    old_sessions = {c.common_name: c for c in previous.clients}

    fresh: dict[str, SpeedStat] = {}
    for entry in current.clients:
        old = old_sessions.get(entry.common_name)
        fresh[entry.common_name] = SpeedStat(
            common_name=entry.common_name,
            tx=_rate(entry.bytes_sent, old.bytes_sent if old else None, seconds),
            rx=_rate(entry.bytes_received, old.bytes_received if old else None, seconds),
        )

    table = [fresh.pop(s.common_name) for s in stats if s.common_name in fresh]
    table.extend(fresh.values())

    active = current.client_names()
    disconnected = [c for name, c in old_sessions.items() if name not in active]
    return RateResult(stats=table, disconnected=disconnected)
