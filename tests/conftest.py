import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vpnstats.database import Base
from vpnstats.models import User

STATUS_LOG = """OpenVPN CLIENT LIST
Updated,2023-05-01 10:00:05
Common Name,Real Address,Bytes Received,Bytes Sent,Connected Since
alice,198.51.100.7:51234,2200,1500,2023-05-01 09:00:00
bob,203.0.113.20:40000,123456,654321,2023-05-01 09:30:00
carol,192.0.2.55:1194,0,500,Mon May  1 09:59:00 2023
ROUTING TABLE
Virtual Address,Common Name,Real Address,Last Ref
10.8.0.6,alice,198.51.100.7:51234,2023-05-01 10:00:01
10.8.0.10,bob,203.0.113.20:40000,2023-05-01 10:00:02
10.8.0.14,carol,192.0.2.55:1194,2023-05-01 10:00:03
GLOBAL STATS
Max bcast/mcast queue length,0
END
"""


def make_log(updated: str, clients: list[tuple]) -> str:
    """Build a status log with the given (name, address, received, sent, since) rows."""
    lines = [
        "OpenVPN CLIENT LIST",
        f"Updated,{updated}",
        "Common Name,Real Address,Bytes Received,Bytes Sent,Connected Since",
    ]
    lines += [",".join(str(field) for field in row) for row in clients]
    lines += [
        "ROUTING TABLE",
        "Virtual Address,Common Name,Real Address,Last Ref",
        "GLOBAL STATS",
        "END",
    ]
    return "\n".join(lines) + "\n"


@pytest.fixture
def status_log():
    return STATUS_LOG


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def alice(db):
    user = User(username="alice", email="alice@example.com", full_name="Alice")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
