"""Parsing and formatting helpers for engine output.

The engine reports sizes, percentages and timestamps as human-oriented text.
These helpers turn them into numbers and datetimes; fields the engine leaves
blank (``--`` or empty) become zero.
"""

import re
from datetime import UTC, datetime

# Decimal units first, binary units after; keys are lowercased
_BYTE_UNITS: dict[str, int] = {
    "": 1,
    "b": 1,
    "k": 1000,
    "kb": 1000,
    "m": 1000**2,
    "mb": 1000**2,
    "g": 1000**3,
    "gb": 1000**3,
    "t": 1000**4,
    "tb": 1000**4,
    "ki": 1024,
    "kib": 1024,
    "mi": 1024**2,
    "mib": 1024**2,
    "gi": 1024**3,
    "gib": 1024**3,
    "ti": 1024**4,
    "tib": 1024**4,
}

_SIZE_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*([A-Za-z]*)\s*$")

_TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[T ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?\s*(Z|[+-]\d{2}:?\d{2})?"
)


def parse_bytes(value: str | None) -> int:
    """Parse an engine size string like '1.5MB' or '512KiB' into bytes.

    Examples:
        >>> parse_bytes("1.5MB")
        1500000
        >>> parse_bytes("1KiB")
        1024
        >>> parse_bytes("--")
        0
    """
    if not value:
        return 0
    value = value.strip()
    if value in ("", "--"):
        return 0
    match = _SIZE_RE.match(value)
    if match:
        multiplier = _BYTE_UNITS.get(match.group(2).lower())
        if multiplier is not None:
            return int(float(match.group(1)) * multiplier)
    try:
        return int(float(value))
    except ValueError:
        return 0


def parse_percentage(perc_str: str | None) -> float:
    """Parse percentage string like '50.5%'; blank or invalid values give 0.0.

    Examples:
        >>> parse_percentage("45.5%")
        45.5
        >>> parse_percentage("--")
        0.0
    """
    try:
        return float(perc_str.strip().rstrip("%"))
    except (ValueError, AttributeError):
        return 0.0


def parse_io_pair(value: str | None) -> tuple[int, int]:
    """Parse a 'read / write' pair such as the stats ``net_io`` field."""
    if not value:
        return 0, 0
    first, _, second = value.partition("/")
    return parse_bytes(first), parse_bytes(second)


def parse_timestamp(value: object) -> datetime | None:
    """Parse an engine timestamp into an aware datetime.

    Accepts unix seconds, RFC 3339 with up to nanosecond precision, and the
    ``2024-01-02 03:04:05.123 +0000 UTC`` form. Returns None when unparseable.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        if value <= 0:
            return None
        return datetime.fromtimestamp(value, tz=UTC)
    if not isinstance(value, str):
        return None

    match = _TIMESTAMP_RE.match(value.strip())
    if not match:
        return None
    date, clock, fraction, zone = match.groups()
    micros = (fraction or "")[:6].ljust(6, "0")
    if zone in (None, "Z"):
        offset = "+00:00"
    elif ":" in zone:
        offset = zone
    else:
        offset = f"{zone[:3]}:{zone[3:]}"
    try:
        return datetime.fromisoformat(f"{date}T{clock}.{micros}{offset}")
    except ValueError:
        return None


def parse_log_line(line: str) -> tuple[datetime, str]:
    """Split a timestamped log line into (timestamp, message).

    Lines without a leading RFC 3339 timestamp are returned whole, stamped
    with the current time.
    """
    token, sep, rest = line.partition(" ")
    if sep and "T" in token:
        timestamp = parse_timestamp(token)
        if timestamp is not None:
            return timestamp, rest
    return datetime.now(UTC), line


def format_size(size_bytes: int) -> str:
    """Format bytes into human-readable string.

    Examples:
        >>> format_size(0)
        '0 B'
        >>> format_size(1024)
        '1.0 KB'
    """
    if size_bytes == 0:
        return "0 B"

    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            if unit == "B":
                return f"{int(size)} {unit}"
            return f"{size:.1f} {unit}"
        size /= 1024.0
    return f"{size:.1f} PB"
