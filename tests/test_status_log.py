import io
import logging
from datetime import datetime

import pytest

from vpnstats.openvpn.status_log import (
    ZERO_TIME,
    ClientSession,
    StatusLogError,
    parse_counter,
    parse_status_log,
    parse_timestamp,
)


def test_parse_well_formed_log(status_log):
    snapshot = parse_status_log(io.StringIO(status_log))

    assert snapshot.updated_at == datetime(2023, 5, 1, 10, 0, 5)
    assert [c.common_name for c in snapshot.clients] == ["alice", "bob", "carol"]
    assert snapshot.clients[0] == ClientSession(
        common_name="alice",
        real_address="198.51.100.7:51234",
        bytes_received=2200,
        bytes_sent=1500,
        connected_since=datetime(2023, 5, 1, 9, 0, 0),
    )
    assert snapshot.clients[1].bytes_received == 123456
    assert snapshot.clients[1].bytes_sent == 654321
    assert snapshot.clients[2].connected_since == datetime(2023, 5, 1, 9, 59, 0)

    assert [r.virtual_address for r in snapshot.routes] == ["10.8.0.6", "10.8.0.10", "10.8.0.14"]
    assert snapshot.routes[1].common_name == "bob"
    assert snapshot.routes[1].real_address == "203.0.113.20:40000"
    assert snapshot.routes[1].last_ref == datetime(2023, 5, 1, 10, 0, 2)


def test_parse_accepts_str_bytes_and_line_lists(status_log):
    from_str = parse_status_log(status_log)
    from_bytes = parse_status_log(status_log.encode())
    from_lines = parse_status_log([line.encode() for line in status_log.splitlines(keepends=True)])

    assert from_str == from_bytes == from_lines


def test_fields_are_trimmed():
    log = (
        "Updated, 2023-05-01 10:00:00\n"
        "  alice ,  198.51.100.7:1 , 10 , 20 , 2023-05-01 09:00:00 \n"
        "ROUTING TABLE\n"
        " 10.8.0.6 , alice , 198.51.100.7:1 , 2023-05-01 09:00:00\n"
        "GLOBAL STATS\n"
    )
    snapshot = parse_status_log(log)

    assert snapshot.clients[0].common_name == "alice"
    assert snapshot.clients[0].real_address == "198.51.100.7:1"
    assert snapshot.clients[0].bytes_received == 10
    assert snapshot.routes[0].virtual_address == "10.8.0.6"


def test_lines_after_global_stats_are_ignored():
    log = (
        "Updated,2023-05-01 10:00:00\n"
        "ROUTING TABLE\n"
        "GLOBAL STATS\n"
        "garbage,that,would,not,parse\n"
    )
    snapshot = parse_status_log(log)

    assert snapshot.clients == ()
    assert snapshot.routes == ()


def test_corrupt_counter_drops_client_section(caplog):
    log = (
        "OpenVPN CLIENT LIST\n"
        "Updated,2023-05-01 10:00:00\n"
        "Common Name,Real Address,Bytes Received,Bytes Sent,Connected Since\n"
        "alice,198.51.100.7:1,100,200,2023-05-01 09:00:00\n"
        "bob,203.0.113.20:2,lots,200,2023-05-01 09:00:00\n"
        "carol,192.0.2.55:3,100,200,2023-05-01 09:00:00\n"
        "ROUTING TABLE\n"
        "GLOBAL STATS\n"
    )
    with caplog.at_level(logging.ERROR):
        snapshot = parse_status_log(log)

    assert snapshot.clients == ()
    assert snapshot.routes == ()
    assert snapshot.updated_at == datetime(2023, 5, 1, 10, 0, 0)
    assert "corrupt" in caplog.text


def test_corrupt_route_keeps_complete_client_section(caplog):
    log = (
        "Updated,2023-05-01 10:00:00\n"
        "alice,198.51.100.7:1,100,200,2023-05-01 09:00:00\n"
        "ROUTING TABLE\n"
        "10.8.0.6,alice,198.51.100.7:1,2023-05-01 09:59:00\n"
        "10.8.0.10,bob\n"
        "GLOBAL STATS\n"
    )
    with caplog.at_level(logging.ERROR):
        snapshot = parse_status_log(log)

    assert [c.common_name for c in snapshot.clients] == ["alice"]
    assert snapshot.routes == ()
    assert "expected 4 fields" in caplog.text


def test_corrupt_first_client_yields_empty_list(caplog):
    log = "Updated,2023-05-01 10:00:00\nalice,198.51.100.7:1,x,y,\nROUTING TABLE\n"
    with caplog.at_level(logging.ERROR):
        snapshot = parse_status_log(log)

    assert snapshot.clients == ()
    assert "corrupt" in caplog.text


def test_short_record_is_corrupt(caplog):
    log = "Updated,2023-05-01 10:00:00\nalice,198.51.100.7:1,100\n"
    with caplog.at_level(logging.ERROR):
        snapshot = parse_status_log(log)

    assert snapshot.clients == ()
    assert "expected 5 fields" in caplog.text


def test_truncated_section_is_dropped(caplog):
    log = (
        "Updated,2023-05-01 10:00:00\n"
        "alice,198.51.100.7:1,100,200,2023-05-01 09:00:00\n"
        "ROUTING TABLE\n"
        "10.8.0.6,alice,198.51.100.7:1,2023-05-01 09:59:00\n"
    )
    with caplog.at_level(logging.WARNING):
        snapshot = parse_status_log(log)

    assert len(snapshot.clients) == 1
    assert snapshot.routes == ()
    assert "section dropped" in caplog.text


def test_missing_header_uses_current_time():
    before = datetime.now()
    snapshot = parse_status_log("")

    assert snapshot.updated_at >= before


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2023-05-01 10:00:00", datetime(2023, 5, 1, 10, 0, 0)),
        ("2023-05-01T10:00:00", datetime(2023, 5, 1, 10, 0, 0)),
        ("01.05.2023 10:00:00", datetime(2023, 5, 1, 10, 0, 0)),
        ("2023/05/01 10:00:00", datetime(2023, 5, 1, 10, 0, 0)),
        ("Mon May  1 10:00:00 2023", datetime(2023, 5, 1, 10, 0, 0)),
        ("May 1 10:00:00 2023", datetime(2023, 5, 1, 10, 0, 0)),
        ("2023-05-01", datetime(2023, 5, 1)),
        ("  2023-05-01 10:00:00  ", datetime(2023, 5, 1, 10, 0, 0)),
    ],
)
def test_parse_timestamp_formats(value, expected):
    assert parse_timestamp(value) == expected


def test_parse_timestamp_rfc3339_is_local_time():
    expected = datetime.fromtimestamp(1682935200)  # 2023-05-01T10:00:00Z
    assert parse_timestamp("2023-05-01T10:00:00Z") == expected
    assert parse_timestamp("2023-05-01T12:00:00+02:00") == expected


def test_parse_timestamp_epoch_seconds_and_millis():
    assert parse_timestamp("1682935200") == datetime.fromtimestamp(1682935200)
    assert parse_timestamp("1682935200123") == datetime.fromtimestamp(1682935200).replace(microsecond=123000)


def test_parse_timestamp_empty_is_zero_without_warning(caplog):
    with caplog.at_level(logging.WARNING):
        assert parse_timestamp("") == ZERO_TIME
    assert caplog.records == []


def test_parse_timestamp_unknown_format_warns(caplog):
    with caplog.at_level(logging.WARNING):
        assert parse_timestamp("yesterday-ish") == ZERO_TIME
    assert "Failed to parse time string" in caplog.text


def test_bad_connected_since_is_not_fatal(caplog):
    log = "Updated,2023-05-01 10:00:00\nalice,198.51.100.7:1,100,200,soon\nROUTING TABLE\n"
    with caplog.at_level(logging.WARNING):
        snapshot = parse_status_log(log)

    assert snapshot.clients[0].connected_since == ZERO_TIME
    assert snapshot.clients[0].bytes_sent == 200


def test_parse_counter():
    assert parse_counter("0") == 0
    assert parse_counter(" 18446744073709551615 ") == 2**64 - 1
    assert parse_counter("0x10") == 16
    with pytest.raises(StatusLogError):
        parse_counter("-1")
    with pytest.raises(StatusLogError):
        parse_counter("18446744073709551616")
    with pytest.raises(StatusLogError):
        parse_counter("ten")
