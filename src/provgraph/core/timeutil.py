"""⏱️ Fuzzy Time - Compare timestamps coming from different clocks.

Process lifetimes and filesystem/network events are recorded by different
auditing subsystems. They do not share a clock source (coarse vs. fine-grained
realtime clocks), so the same physical instant can carry timestamps that differ
by a few hundred milliseconds.

Events from *different* streams are joined with the fuzzy predicates below.
Events from the *same* stream keep strict comparisons.

Example:
    fuzzy_before(birth, event_time)            # birth < event_time + 500ms
    fuzzy_equals(t1, t2, epsilon=250)          # |t1 - t2| < 250ms
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any

import pandas as pd

DEFAULT_EPSILON_MS = 500

EPOCH = datetime(1970, 1, 1)

# Initial constraint for a seed: later than any recorded event
FAR_FUTURE = datetime(2100, 2, 1, 8, 0, 1)

_T_SEPARATOR = re.compile(r"(\d)T(\d)")


def _epsilon_for(t: Any, epsilon: Any) -> Any:
    """Express epsilon in the same unit as t (numbers are milliseconds)."""
    if isinstance(t, datetime) and not isinstance(epsilon, timedelta):
        return timedelta(milliseconds=epsilon)
    return epsilon


def fuzzy_before(t1: Any, t2: Any, epsilon: Any = DEFAULT_EPSILON_MS) -> bool:
    """True iff t1 < t2 + epsilon.

    Args:
        t1: First timestamp (datetime or number)
        t2: Second timestamp (same type as t1)
        epsilon: Tolerated skew (timedelta, or milliseconds for datetimes)
    """
    return t1 < t2 + _epsilon_for(t2, epsilon)


def fuzzy_equals(t1: Any, t2: Any, epsilon: Any = DEFAULT_EPSILON_MS) -> bool:
    """True iff t1 and t2 are within epsilon of each other (symmetric)."""
    return fuzzy_before(t1, t2, epsilon) and fuzzy_before(t2, t1, epsilon)


def parse_timestamp(value: Any) -> datetime | None:
    """Normalize a timestamp from any store into a naive UTC datetime.

    Accepts datetimes, pandas Timestamps, ISO strings (with 'T' or space,
    optional trailing 'Z') and integers (milliseconds since epoch).
    Missing values (None, NaN, NaT) become None.
    """
    if value is None or value is pd.NaT:
        return None

    if isinstance(value, pd.Timestamp):
        if value.tzinfo is not None:
            value = value.tz_convert("UTC").tz_localize(None)
        return value.to_pydatetime()

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    if isinstance(value, float) and math.isnan(value):
        return None

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return EPOCH + timedelta(milliseconds=value)

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.isdigit():
            return EPOCH + timedelta(milliseconds=int(text))
        # 2018-07-26T23:14:24.577Z -> 2018-07-26 23:14:24.577
        text = _T_SEPARATOR.sub(r"\1 \2", text)
        if text.endswith("Z"):
            text = text[:-1]
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed

    raise TypeError(f"Cannot interpret {value!r} as a timestamp")


def format_timestamp(value: datetime | None) -> str:
    """Format as 'YYYY-MM-DD HH:MM:SS.mmm' (millisecond precision)."""
    if value is None:
        return "N/A"
    return value.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


def microseconds_since_epoch(value: datetime) -> int:
    """Exact integer ordering key for a naive datetime."""
    return (value - EPOCH) // timedelta(microseconds=1)
