"""Composite and series key parsing.

A composite key addresses one block and has the form
``<series key>#!~#<field>``. The series key is a measurement followed by
comma-separated ``tag=value`` pairs, in which ``,``, ``=`` and space may be
escaped with a backslash.
"""

from __future__ import annotations

from ..core.errors import KeyParseError
from ..core.types import CompositeKey, SeriesKey, Tag

FIELD_SEPARATOR = b"#!~#"
_ESCAPABLE = frozenset(", =")


def split_composite_key(key: CompositeKey) -> tuple[bytes, bytes]:
    """Split a composite key into (series bytes, field bytes)."""
    series, sep, field = key.partition(FIELD_SEPARATOR)
    if not sep:
        raise KeyParseError(f"Missing field separator in composite key {key!r}")
    return series, field


def make_composite_key(series: SeriesKey | bytes, field: str | bytes) -> CompositeKey:
    """Build a composite key from a series key and a field name."""
    if isinstance(series, str):
        series = series.encode("utf-8")
    if isinstance(field, str):
        field = field.encode("utf-8")
    return series + FIELD_SEPARATOR + field


def _split_unescaped(text: str, sep: str, maxsplit: int = -1) -> list[str]:
    """Split on separator characters not preceded by a backslash."""
    parts = []
    start = 0
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            i += 2
            continue
        if ch == sep and maxsplit != 0:
            parts.append(text[start:i])
            start = i + 1
            maxsplit -= 1
        i += 1
    parts.append(text[start:])
    return parts


def _unescape(text: str) -> str:
    if "\\" not in text:
        return text
    out = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text) and text[i + 1] in _ESCAPABLE:
            out.append(text[i + 1])
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def parse_series_key(series: bytes) -> tuple[str, list[Tag]]:
    """Parse series bytes into (measurement, tags) with tags in stored order.

    Raises:
        KeyParseError: If the key is not UTF-8, has an empty measurement,
            or contains a tag without a key or an ``=``.
    """
    try:
        text = series.decode("utf-8")
    except UnicodeDecodeError as e:
        raise KeyParseError(f"Series key {series!r} is not valid UTF-8: {e}") from e

    parts = _split_unescaped(text, ",")
    measurement = _unescape(parts[0])
    if not measurement:
        raise KeyParseError(f"Empty measurement in series key {text!r}")

    tags: list[Tag] = []
    for part in parts[1:]:
        kv = _split_unescaped(part, "=", maxsplit=1)
        if len(kv) != 2 or not kv[0]:
            raise KeyParseError(f"Malformed tag {part!r} in series key {text!r}")
        tags.append((_unescape(kv[0]), _unescape(kv[1])))
    return measurement, tags


def format_series_key(measurement: str, tags: list[Tag]) -> SeriesKey:
    """Serialize measurement and tags as ``measurement,k1=v1,k2=v2``.

    The comma after the measurement is always written, so a series without
    tags is ``measurement,``.
    """
    return measurement + "," + ",".join(f"{k}={v}" for k, v in tags)


def series_key_of(key: CompositeKey) -> SeriesKey:
    """Derive the series key string of a block from its composite key."""
    series, _field = split_composite_key(key)
    measurement, tags = parse_series_key(series)
    return format_series_key(measurement, tags)
