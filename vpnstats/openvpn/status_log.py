"""
Parser for the OpenVPN status log (status-version 1).

The daemon rewrites the whole file on every status tick:

    OpenVPN CLIENT LIST
    Updated,2023-05-01 10:00:00
    Common Name,Real Address,Bytes Received,Bytes Sent,Connected Since
    alice,198.51.100.7:51234,2000,1000,2023-05-01 09:00:00
    ROUTING TABLE
    Virtual Address,Common Name,Real Address,Last Ref
    10.8.0.6,alice,198.51.100.7:51234,2023-05-01 09:59:58
    GLOBAL STATS
    Max bcast/mcast queue length,0
    END

Parsing is best effort: a corrupt record stops the parse, the problem is
logged and whatever was parsed before it is returned. Nothing is raised.
"""
import io
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Union

logger = logging.getLogger(__name__)

# Returned for empty or unparsable timestamps.
ZERO_TIME = datetime.min

UINT64_MAX = 2**64 - 1

# Epoch integers above this are milliseconds.
EPOCH_MILLIS_THRESHOLD = 1_000_000_000_000

TIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%d.%m.%Y %H:%M:%S",
    "%Y/%m/%d %H:%M:%S",
    "%a %b %d %H:%M:%S %Y",
    "%b %d %H:%M:%S %Y",
    "%Y-%m-%d",
)

TITLE_MARKER = "OpenVPN CLIENT LIST"
CLIENT_HEADER_MARKER = "Common Name"
ROUTE_HEADER_MARKER = "Virtual Address"
ROUTING_TABLE_MARKER = "ROUTING TABLE"
GLOBAL_STATS_MARKER = "GLOBAL STATS"

CLIENT_FIELDS = 5
ROUTE_FIELDS = 4

# Parser states, strictly forward.
READ_HEADER = "header"
READ_CLIENTS = "clients"
READ_ROUTES = "routes"
DONE = "done"


class StatusLogError(ValueError):
    """A status log record could not be parsed."""


@dataclass(frozen=True)
class ClientSession:
    common_name: str
    real_address: str
    bytes_received: int
    bytes_sent: int
    connected_since: datetime


@dataclass(frozen=True)
class RoutingEntry:
    virtual_address: str
    common_name: str
    real_address: str
    last_ref: datetime


@dataclass(frozen=True)
class Snapshot:
    clients: tuple[ClientSession, ...]
    routes: tuple[RoutingEntry, ...]
    updated_at: datetime

    def client_names(self) -> set[str]:
        return {c.common_name for c in self.clients}


def _to_local_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def _from_epoch(number: int) -> datetime:
    if number > EPOCH_MILLIS_THRESHOLD:
        seconds, millis = divmod(number, 1000)
        return datetime.fromtimestamp(seconds).replace(microsecond=millis * 1000)
    return datetime.fromtimestamp(number)


def parse_timestamp(value: str) -> datetime:
    """
    Parse a status log timestamp, trying each of TIME_FORMATS in order and
    then epoch seconds / milliseconds. Returns ZERO_TIME when nothing matches.
    """
    if not value:
        return ZERO_TIME
    value = value.strip()
    for fmt in TIME_FORMATS:
        try:
            return _to_local_naive(datetime.strptime(value, fmt))
        except ValueError:
            continue
    try:
        return _from_epoch(int(value))
    except (ValueError, OverflowError, OSError):
        pass
    logger.warning("Failed to parse time string %r", value)
    return ZERO_TIME


def parse_counter(value: str) -> int:
    """Parse an unsigned 64-bit byte counter."""
    value = value.strip()
    try:
        number = int(value, 10)
    except ValueError:
        try:
            number = int(value, 0)
        except ValueError:
            raise StatusLogError(f"invalid counter: {value!r}") from None
    if number < 0 or number > UINT64_MAX:
        raise StatusLogError(f"counter out of range: {value!r}")
    return number


def _split(line: str, expected: int) -> list[str]:
    fields = [f.strip() for f in line.split(",")]
    if len(fields) < expected:
        raise StatusLogError(f"expected {expected} fields, got {len(fields)}: {line!r}")
    return fields


def parse_client_line(line: str) -> ClientSession:
    common_name, real_address, received, sent, since = _split(line, CLIENT_FIELDS)[:CLIENT_FIELDS]
    return ClientSession(
        common_name=common_name,
        real_address=real_address,
        bytes_received=parse_counter(received),
        bytes_sent=parse_counter(sent),
        connected_since=parse_timestamp(since),
    )


def parse_route_line(line: str) -> RoutingEntry:
    virtual_address, common_name, real_address, last_ref = _split(line, ROUTE_FIELDS)[:ROUTE_FIELDS]
    return RoutingEntry(
        virtual_address=virtual_address,
        common_name=common_name,
        real_address=real_address,
        last_ref=parse_timestamp(last_ref),
    )


def _lines(stream: Union[str, bytes, Iterable]) -> Iterable[str]:
    if isinstance(stream, bytes):
        stream = stream.decode("utf-8", errors="replace")
    if isinstance(stream, str):
        stream = io.StringIO(stream)
    for line in stream:
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        yield line.rstrip("\r\n")


def parse_status_log(stream: Union[str, bytes, Iterable]) -> Snapshot:
    """
    Parse a status log into a Snapshot.

    Never raises on malformed content: the first bad record ends the parse
    and the corruption is logged. A section is only kept once its closing
    marker has been read, so a corrupt or truncated section comes back empty
    while the header timestamp and earlier complete sections survive.
    """
    state = READ_HEADER
    clients: tuple[ClientSession, ...] = ()
    routes: tuple[RoutingEntry, ...] = ()
    pending: list = []
    updated_at = None
    lineno = 0

    try:
        for lineno, line in enumerate(_lines(stream), start=1):
            if state == DONE:
                break
            text = line.strip()
            if not text:
                continue

            if state == READ_HEADER:
                if text.startswith(TITLE_MARKER):
                    continue
                state = READ_CLIENTS
                if text.startswith(CLIENT_HEADER_MARKER):
                    continue
                fields = text.split(",")
                if len(fields) < 2:
                    raise StatusLogError(f"header has no timestamp: {text!r}")
                updated_at = parse_timestamp(fields[1])
            elif state == READ_CLIENTS:
                if ROUTING_TABLE_MARKER in text:
                    clients, pending = tuple(pending), []
                    state = READ_ROUTES
                elif text.startswith(CLIENT_HEADER_MARKER):
                    continue
                else:
                    pending.append(parse_client_line(text))
            elif state == READ_ROUTES:
                if GLOBAL_STATS_MARKER in text:
                    routes, pending = tuple(pending), []
                    state = DONE
                elif text.startswith(ROUTE_HEADER_MARKER):
                    continue
                else:
                    pending.append(parse_route_line(text))
    except StatusLogError as e:
        logger.error("OpenVPN status log is corrupt (line %d): %s", lineno, e)
    except UnicodeError as e:
        logger.error("OpenVPN status log is not valid text: %s", e)
    else:
        if state in (READ_CLIENTS, READ_ROUTES):
            logger.warning("OpenVPN status log ended inside the %s section, section dropped", state)

    if updated_at is None:
        updated_at = datetime.now()
    return Snapshot(clients=clients, routes=routes, updated_at=updated_at)
