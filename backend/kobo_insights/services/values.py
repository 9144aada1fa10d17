"""
Helpers for reading raw submission values.

Kobo submissions arrive as loosely typed JSON: numbers may be strings, dates
may carry timezones, unanswered questions are either missing or empty strings.
Everything here treats a value that cannot be interpreted as absent rather
than as an error.
"""
import re
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

import numpy as np
import pandas as pd

NUMBER_PATTERN = re.compile(r'^[-+]?\d*\.?\d+$')
ISO_DATE_PREFIX = re.compile(r'^\d{4}-\d{2}-\d{2}')
# 2024-03-01, 2024/3/1 or 01/03/2024 at the start of a value
DATE_PART = re.compile(r'^(\d{4}[-/]\d{1,2}[-/]\d{1,2}|\d{1,2}[-/.]\d{1,2}[-/.]\d{2,4})')
BOOLEAN_PATTERN = re.compile(r'^(true|false|yes|no|1|0)$', re.IGNORECASE)


def is_missing(value: Any) -> bool:
    """Missing means the question was never answered (absent key or null)."""
    if value is None:
        return True
    return isinstance(value, float) and np.isnan(value)


def is_empty(value: Any) -> bool:
    """Empty covers missing values and blank strings."""
    if is_missing(value):
        return True
    return isinstance(value, str) and not value.strip()


def normalize(value: Any) -> str:
    """Lower-cased, trimmed string form used for counting distinct answers."""
    return str(value).strip().lower()


def label(value: Any) -> str:
    """Trimmed string form used as a chart label."""
    return str(value).strip()


def looks_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    return bool(NUMBER_PATTERN.match(str(value).strip()))


def to_number(value: Any) -> Optional[float]:
    """Parse a single value as a finite float, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if not np.isfinite(number):
        return None
    return number


def to_numbers(values: Iterable[Any]) -> pd.Series:
    """Parse values as floats, dropping anything unparseable."""
    series = pd.Series([to_number(v) for v in values], dtype="float64")
    return series.dropna()


def parse_dates(values: Iterable[Any]) -> pd.Series:
    """
    Parse values as UTC timestamps.

    Only values that start with a calendar date are parsed; bare times,
    month names and plain numbers become NaT, as does anything else that
    fails to parse. Callers drop NaT. Naive timestamps are treated as UTC so
    that day bucketing is stable across servers.
    """
    strings = [None if is_empty(v) else str(v).strip() for v in values]
    if not strings:
        return pd.Series([], dtype="datetime64[ns, UTC]")
    dated = [s if s is not None and DATE_PART.match(s) else None for s in strings]
    return pd.to_datetime(pd.Series(dated, dtype="object"), errors="coerce", utc=True, format="mixed")


def non_empty(values: Iterable[Any]) -> List[Any]:
    return [v for v in values if not is_empty(v)]


UTC_ISO_FORMAT = '%Y-%m-%dT%H:%M:%S.%fZ'


def to_utc_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime(UTC_ISO_FORMAT)


def from_utc_iso(text: str) -> datetime:
    """Inverse of to_utc_iso."""
    return datetime.strptime(text, UTC_ISO_FORMAT).replace(tzinfo=timezone.utc)


def utc_now_iso() -> str:
    """Current time as an ISO-8601 UTC string ending in Z."""
    return to_utc_iso(datetime.now(timezone.utc))
