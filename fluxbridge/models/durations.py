"""Go-style duration strings (``1m0s``, ``5m0s``, ``250ms``).

Flux objects carry ``interval`` and ``timeout`` in the format produced by
Go's ``time.Duration.String()``; these helpers convert between that format
and ``datetime.timedelta``.
"""

from __future__ import annotations

import re
from datetime import timedelta
from typing import Annotated, Any

from pydantic import BeforeValidator, PlainSerializer

_UNIT_SECONDS: dict[str, float] = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 1e-3,
    "us": 1e-6,
    "µs": 1e-6,
    "ns": 1e-9,
}

_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(h|ms|m|s|us|µs|ns)")


def parse_duration(value: str) -> timedelta:
    """Parse a Go duration string into a ``timedelta``.

    >>> parse_duration("1m30s")
    datetime.timedelta(seconds=90)
    """
    text = value.strip()
    if text in ("0", ""):
        return timedelta(0)
    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    total = 0.0
    pos = 0
    for match in _COMPONENT.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=sign * total)


def format_duration(value: timedelta) -> str:
    """Render a ``timedelta`` the way Go's ``Duration.String()`` does."""
    total = value.total_seconds()
    if total == 0:
        return "0s"
    sign = "-" if total < 0 else ""
    total = abs(total)

    if total < 1:
        micros = round(total * 1e6)
        if micros % 1000 == 0:
            return f"{sign}{micros // 1000}ms"
        return f"{sign}{micros}µs"

    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    seconds_text = f"{seconds:.6f}".rstrip("0").rstrip(".")
    if hours:
        return f"{sign}{int(hours)}h{int(minutes)}m{seconds_text}s"
    if minutes:
        return f"{sign}{int(minutes)}m{seconds_text}s"
    return f"{sign}{seconds_text}s"


def _coerce(value: Any) -> Any:
    if isinstance(value, str):
        return parse_duration(value)
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    return value


GoDuration = Annotated[
    timedelta,
    BeforeValidator(_coerce),
    PlainSerializer(format_duration, return_type=str, when_used="json"),
]
