"""
Connection history: the disconnect sink used by the status log watcher and
the queries behind the statistics API.
"""
import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vpnstats.models.connection_statistic import ConnectionStatistic
from vpnstats.models.user import User
from vpnstats.openvpn.rates import DisconnectEvent
from vpnstats.schemas.statistic import StatisticFilters, StatisticSummary, UserStatistics

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    "connected_since": ConnectionStatistic.connected_since,
    "connected_until": ConnectionStatistic.connected_until,
    "bytes_received": ConnectionStatistic.bytes_received,
    "bytes_sent": ConnectionStatistic.bytes_sent,
    "common_name": ConnectionStatistic.common_name,
}


def record_disconnect(db: Session, event: DisconnectEvent) -> ConnectionStatistic | None:
    """
    Close out a session for the user whose username is the common name.
    Unknown common names are logged and skipped.
    """
    session = event.session
    user = db.query(User).filter(User.username == session.common_name).first()
    if not user:
        logger.info("User %s not found, connection not recorded", session.common_name)
        return None
    entry = ConnectionStatistic(
        user_id=user.id,
        common_name=session.common_name,
        real_address=session.real_address,
        connected_since=session.connected_since,
        connected_until=event.connected_until,
        bytes_received=session.bytes_received,
        bytes_sent=session.bytes_sent,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


class DatabaseSink:
    """
    Disconnect sink for StatusLogWatcher. Opens its own session per event;
    database errors are logged and never reach the watcher.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def __call__(self, event: DisconnectEvent) -> None:
        db = self._session_factory()
        try:
            record_disconnect(db, event)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to record disconnect of %s: %s", event.session.common_name, e)
        finally:
            db.close()


def _duration_seconds(db: Session):
    since = ConnectionStatistic.connected_since
    until = ConnectionStatistic.connected_until
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        return (func.julianday(until) - func.julianday(since)) * 86400.0
    return func.extract("epoch", until - since)


def get_statistics_summary(
    db: Session,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    common_name: str = "",
) -> list[StatisticSummary]:
    """Per common name totals for sessions started inside (start_date, end_date)."""
    q = db.query(
        ConnectionStatistic.common_name,
        func.count(ConnectionStatistic.id),
        func.coalesce(func.sum(ConnectionStatistic.bytes_received), 0),
        func.coalesce(func.sum(ConnectionStatistic.bytes_sent), 0),
        func.avg(_duration_seconds(db)),
    )
    if start_date:
        q = q.filter(ConnectionStatistic.connected_since > start_date)
    if end_date:
        q = q.filter(ConnectionStatistic.connected_since < end_date)
    if common_name:
        q = q.filter(ConnectionStatistic.common_name.like(f"%{common_name}%"))
    rows = q.group_by(ConnectionStatistic.common_name).order_by(ConnectionStatistic.common_name).all()
    return [
        StatisticSummary(
            common_name=name,
            connection_count=count,
            total_bytes_received=int(received),
            total_bytes_sent=int(sent),
            total_bytes=int(received) + int(sent),
            avg_connection_duration_seconds=float(avg or 0),
        )
        for name, count, received, sent, avg in rows
    ]


def get_detailed_statistics(db: Session, filters: StatisticFilters) -> list[ConnectionStatistic]:
    """Individual sessions, newest first unless told otherwise."""
    q = db.query(ConnectionStatistic)
    if filters.start_date:
        q = q.filter(ConnectionStatistic.connected_since >= filters.start_date)
    if filters.end_date:
        q = q.filter(ConnectionStatistic.connected_until <= filters.end_date)
    if filters.common_name:
        q = q.filter(ConnectionStatistic.common_name == filters.common_name)
    if filters.real_address:
        q = q.filter(ConnectionStatistic.real_address.like(f"%{filters.real_address}%"))
    if filters.user_id:
        q = q.filter(ConnectionStatistic.user_id == filters.user_id)

    column = SORTABLE_COLUMNS.get(filters.sort_by)
    if column is None:
        raise ValueError(f"Cannot sort by {filters.sort_by!r}. Valid: {sorted(SORTABLE_COLUMNS)}")
    order = filters.sort_order.lower()
    if order not in ("asc", "desc"):
        raise ValueError("sort_order must be asc or desc")
    q = q.order_by(column.asc() if order == "asc" else column.desc())

    if filters.limit > 0:
        q = q.limit(filters.limit)
    if filters.offset > 0:
        q = q.offset(filters.offset)
    return q.all()


def get_user_statistics(
    db: Session,
    common_name: str,
    start_date: datetime,
    end_date: datetime,
) -> UserStatistics:
    total, received, sent, avg, last = (
        db.query(
            func.count(ConnectionStatistic.id),
            func.coalesce(func.sum(ConnectionStatistic.bytes_received), 0),
            func.coalesce(func.sum(ConnectionStatistic.bytes_sent), 0),
            func.avg(_duration_seconds(db)),
            func.max(ConnectionStatistic.connected_since),
        )
        .filter(
            ConnectionStatistic.common_name == common_name,
            ConnectionStatistic.connected_since >= start_date,
            ConnectionStatistic.connected_until <= end_date,
        )
        .one()
    )
    user = db.query(User).filter(User.username == common_name).first()
    return UserStatistics(
        common_name=common_name,
        user_id=user.id if user else None,
        total_connections=total,
        total_bytes_received=int(received),
        total_bytes_sent=int(sent),
        total_bytes=int(received) + int(sent),
        avg_connection_duration_seconds=float(avg or 0),
        last_connection=last,
    )
