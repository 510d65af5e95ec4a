"""Tests for engine output parsing helpers."""

from datetime import UTC, datetime, timedelta

import pytest

from deckhand.utils import (
    format_size,
    parse_bytes,
    parse_io_pair,
    parse_log_line,
    parse_percentage,
    parse_timestamp,
)


@pytest.mark.parametrize(
    "value,expected",
    [
        ("0B", 0),
        ("512B", 512),
        ("1kB", 1000),
        ("1KB", 1000),
        ("1.5MB", 1_500_000),
        ("2GB", 2_000_000_000),
        ("1TB", 1_000_000_000_000),
        ("1KiB", 1024),
        ("1.5MiB", 1_572_864),
        ("2GiB", 2 * 1024**3),
        ("1TiB", 1024**4),
        ("1.2k", 1200),
        ("3M", 3_000_000),
        ("2G", 2_000_000_000),
        ("100Mi", 100 * 1024**2),
        ("1Gi", 1024**3),
        ("4Ki", 4096),
        ("12.3 MB", 12_300_000),
        ("4096", 4096),
        ("--", 0),
        ("", 0),
        (None, 0),
        ("garbage", 0),
    ],
)
def test_parse_bytes(value, expected):
    assert parse_bytes(value) == expected


def test_parse_percentage():
    assert parse_percentage("45.5%") == 45.5
    assert parse_percentage(" 100% ") == 100.0
    assert parse_percentage("--") == 0.0
    assert parse_percentage(None) == 0.0


def test_parse_io_pair():
    assert parse_io_pair("1.2kB / 3.4MB") == (1200, 3_400_000)
    assert parse_io_pair("10MB") == (10_000_000, 0)
    assert parse_io_pair("-- / --") == (0, 0)
    assert parse_io_pair("") == (0, 0)


class TestParseTimestamp:
    def test_unix_seconds(self):
        assert parse_timestamp(1700000000) == datetime.fromtimestamp(1700000000, tz=UTC)

    def test_nanosecond_rfc3339(self):
        parsed = parse_timestamp("2024-05-01T10:00:00.123456789Z")
        assert parsed == datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=UTC)

    def test_offset(self):
        parsed = parse_timestamp("2024-05-01T10:00:00+02:00")
        assert parsed.utcoffset() == timedelta(hours=2)

    def test_go_default_format(self):
        parsed = parse_timestamp("2024-05-01 10:00:00.5 +0000 UTC")
        assert parsed == datetime(2024, 5, 1, 10, 0, 0, 500000, tzinfo=UTC)

    @pytest.mark.parametrize("value", [None, "", "2 hours ago", 0, True, {"a": 1}])
    def test_unparseable(self, value):
        assert parse_timestamp(value) is None


class TestParseLogLine:
    def test_timestamped_line(self):
        timestamp, message = parse_log_line("2024-05-01T10:00:00.000000001Z GET / 200")
        assert timestamp == datetime(2024, 5, 1, 10, 0, tzinfo=UTC)
        assert message == "GET / 200"

    def test_plain_line_keeps_full_text(self):
        before = datetime.now(UTC)
        timestamp, message = parse_log_line("Starting server on port 80")
        assert message == "Starting server on port 80"
        assert timestamp >= before

    def test_empty_line(self):
        _, message = parse_log_line("")
        assert message == ""


def test_format_size():
    assert format_size(0) == "0 B"
    assert format_size(512) == "512 B"
    assert format_size(1024) == "1.0 KB"
    assert format_size(1536 * 1024 * 1024) == "1.5 GB"
