from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from vpnstats.database import get_db
from vpnstats.openvpn.registry import StatsRegistry
from vpnstats.openvpn.source import SnapshotUnavailableError
from vpnstats.schemas.statistic import (
    ClientSessionResponse,
    ConnectionsResponse,
    ConnectionStatisticResponse,
    RoutingEntryResponse,
    SpeedStatResponse,
    StatisticFilters,
    StatisticSummary,
    UserStatistics,
)
from vpnstats.services.statistics import (
    get_detailed_statistics,
    get_statistics_summary,
    get_user_statistics,
)

router = APIRouter(prefix="/api/statistics", tags=["statistics"])


def get_registry(request: Request) -> StatsRegistry:
    registry = getattr(request.app.state, "stats_registry", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Statistics are not available.",
        )
    return registry


@router.get("/speed", response_model=list[SpeedStatResponse])
def get_speed(registry: StatsRegistry = Depends(get_registry)):
    """Current transmit/receive rate (bytes/sec) per connected client."""
    return registry.get_statistics()


@router.get("/connections", response_model=ConnectionsResponse)
def get_connections(registry: StatsRegistry = Depends(get_registry)):
    """Clients and routes from the latest status log snapshot."""
    try:
        snapshot = registry.get_connections()
    except SnapshotUnavailableError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
        )
    return ConnectionsResponse(
        updated_at=snapshot.updated_at,
        clients=[ClientSessionResponse.model_validate(c) for c in snapshot.clients],
        routes=[RoutingEntryResponse.model_validate(r) for r in snapshot.routes],
    )


@router.get("", response_model=list[StatisticSummary])
def list_statistics(
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    common_name: str = "",
    db: Session = Depends(get_db),
):
    """Finished sessions grouped by common name. Optional period and name filter."""
    return get_statistics_summary(db, start_date, end_date, common_name)


@router.get("/detailed", response_model=list[ConnectionStatisticResponse])
def list_detailed_statistics(
    filters: StatisticFilters = Depends(),
    db: Session = Depends(get_db),
):
    try:
        return get_detailed_statistics(db, filters)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )


@router.get("/users/{common_name}", response_model=UserStatistics)
def user_statistics(
    common_name: str,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    db: Session = Depends(get_db),
):
    """Totals for one common name; without dates the whole history is used."""
    return get_user_statistics(db, common_name, start_date or datetime.min, end_date or datetime.max)
