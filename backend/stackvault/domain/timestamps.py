"""Backup timestamp helpers.

On disk, timestamps are `YYYYMMDD_HHMMSS` so that file names sort
chronologically. In memory they are naive local `datetime` values and all
ordering is done on those, never on the strings.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
TIMESTAMP_PATTERN = re.compile(r"(\d{8}_\d{6})")


def now_local() -> datetime:
    return datetime.now().replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse a `YYYYMMDD_HHMMSS` string; raises ValueError on bad input."""
    return datetime.strptime(value, TIMESTAMP_FORMAT)


def extract_timestamp(name: str) -> Optional[datetime]:
    """Return the first embedded timestamp in a file name, or None."""
    match = TIMESTAMP_PATTERN.search(name)
    if match is None:
        return None
    try:
        return parse_timestamp(match.group(1))
    except ValueError:
        return None
