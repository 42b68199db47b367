from datetime import datetime
from pydantic import BaseModel


class SpeedStatResponse(BaseModel):
    common_name: str
    tx: float  # bytes/sec
    rx: float  # bytes/sec

    class Config:
        from_attributes = True


class ClientSessionResponse(BaseModel):
    common_name: str
    real_address: str
    bytes_received: int
    bytes_sent: int
    connected_since: datetime

    class Config:
        from_attributes = True


class RoutingEntryResponse(BaseModel):
    virtual_address: str
    common_name: str
    real_address: str
    last_ref: datetime

    class Config:
        from_attributes = True


class ConnectionsResponse(BaseModel):
    updated_at: datetime
    clients: list[ClientSessionResponse]
    routes: list[RoutingEntryResponse]


class ConnectionStatisticResponse(BaseModel):
    id: str
    user_id: str
    common_name: str
    real_address: str
    connected_since: datetime
    connected_until: datetime
    bytes_received: int
    bytes_sent: int

    class Config:
        from_attributes = True


class StatisticSummary(BaseModel):
    """Totals per common name over a period."""
    common_name: str
    connection_count: int
    total_bytes_received: int
    total_bytes_sent: int
    total_bytes: int
    avg_connection_duration_seconds: float


class UserStatistics(BaseModel):
    common_name: str
    user_id: str | None = None
    total_connections: int = 0
    total_bytes_received: int = 0
    total_bytes_sent: int = 0
    total_bytes: int = 0
    avg_connection_duration_seconds: float = 0.0
    last_connection: datetime | None = None


class StatisticFilters(BaseModel):
    start_date: datetime | None = None
    end_date: datetime | None = None
    common_name: str | None = None
    real_address: str | None = None
    user_id: str | None = None
    sort_by: str = "connected_since"
    sort_order: str = "desc"
    limit: int = 0
    offset: int = 0
