"""One finished VPN session, written when a client disappears from the status log."""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, BigInteger, DateTime, ForeignKey
from vpnstats.database import Base


class ConnectionStatistic(Base):
    __tablename__ = "connection_statistics"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    common_name = Column(String(64), nullable=False, index=True)
    real_address = Column(String(64), nullable=False, default="")
    connected_since = Column(DateTime, nullable=False, index=True)
    connected_until = Column(DateTime, nullable=False)
    bytes_received = Column(BigInteger, nullable=False, default=0)
    bytes_sent = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
