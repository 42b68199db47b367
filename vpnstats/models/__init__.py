from vpnstats.models.user import User
from vpnstats.models.connection_statistic import ConnectionStatistic

__all__ = ["User", "ConnectionStatistic"]
