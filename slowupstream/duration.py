"""Parsing of human-readable durations such as ``10s``, ``1m30s`` or ``250ms``.

The grammar is a sign followed by one or more ``<number><unit>`` terms::

    [+-] ( <digits>[.<digits>] | .<digits> ) <unit> ...

with ``unit`` one of ``ns``, ``us`` (``µs``), ``ms``, ``s``, ``m``, ``h``.
The bare string ``0`` is accepted as well.
"""
import re
from datetime import timedelta
from decimal import Decimal

# microseconds per unit; longest units first so "ms" wins over "m"
UNITS = {
    "ns": Decimal("0.001"),
    "us": Decimal(1),
    "µs": Decimal(1),  # micro sign
    "μs": Decimal(1),  # greek mu
    "ms": Decimal(1000),
    "s": Decimal(1000000),
    "m": Decimal(60000000),
    "h": Decimal(3600000000),
}

# durations are bounded by a signed 64-bit count of nanoseconds
MAX_NANOSECONDS = 2 ** 63 - 1

_TERM = re.compile(
    r"(?P<number>\d+(?:\.\d*)?|\.\d+)(?P<unit>ns|us|µs|μs|ms|s|m|h)?"
)


class InvalidDuration(ValueError):
    """Raised when a duration string does not follow the grammar."""


def parse_duration(text):
    """Parse *text* into a :class:`datetime.timedelta`.

    Resolution is one microsecond, anything finer is truncated.
    Negative values are returned as negative deltas.
    """
    original = text
    if not isinstance(text, str):
        raise InvalidDuration(f"invalid duration {original!r}")

    sign = 1
    if text[:1] in ("+", "-"):
        if text[0] == "-":
            sign = -1
        text = text[1:]

    if text == "0":
        return timedelta(0)
    if not text:
        raise InvalidDuration(f"invalid duration {original!r}")

    total = Decimal(0)
    pos = 0
    while pos < len(text):
        match = _TERM.match(text, pos)
        if match is None:
            raise InvalidDuration(f"invalid duration {original!r}")
        unit = match.group("unit")
        if unit is None:
            raise InvalidDuration(f"missing unit in duration {original!r}")
        total += Decimal(match.group("number")) * UNITS[unit]
        pos = match.end()

    limit = MAX_NANOSECONDS + 1 if sign < 0 else MAX_NANOSECONDS
    if total * 1000 > limit:
        raise InvalidDuration(f"invalid duration {original!r}")
    return timedelta(microseconds=sign * int(total))


def format_duration(delta):
    """Render *delta* compactly, e.g. ``1h2m3.5s``, ``250ms`` or ``0s``."""
    micros = (delta.days * 86400 + delta.seconds) * 1000000 + delta.microseconds
    if micros == 0:
        return "0s"

    sign = "-" if micros < 0 else ""
    micros = abs(micros)
    if micros < 1000:
        return f"{sign}{micros}µs"
    if micros < 1000000:
        return f"{sign}{_trim(micros, 1000)}ms"

    hours, rest = divmod(micros, 3600000000)
    minutes, rest = divmod(rest, 60000000)
    out = sign
    if hours:
        out += f"{hours}h"
    if hours or minutes:
        out += f"{minutes}m"
    return out + f"{_trim(rest, 1000000)}s"


def _trim(value, scale):
    whole, frac = divmod(value, scale)
    if not frac:
        return str(whole)
    digits = str(frac).rjust(len(str(scale)) - 1, "0").rstrip("0")
    return f"{whole}.{digits}"
