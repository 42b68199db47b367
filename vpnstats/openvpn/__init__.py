from vpnstats.openvpn.rates import DisconnectEvent, SpeedStat, compute_rates
from vpnstats.openvpn.registry import StatsRegistry
from vpnstats.openvpn.source import SnapshotSource, SnapshotUnavailableError
from vpnstats.openvpn.status_log import ClientSession, RoutingEntry, Snapshot, parse_status_log
from vpnstats.openvpn.watcher import StatusLogWatcher

__all__ = [
    "ClientSession", "RoutingEntry", "Snapshot", "parse_status_log",
    "SnapshotSource", "SnapshotUnavailableError", "SpeedStat", "DisconnectEvent",
    "compute_rates", "StatusLogWatcher", "StatsRegistry",
]
