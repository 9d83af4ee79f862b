"""Date-shaped value detection.

Values that look like dates are never sent to the reconciliation service;
the caller is asked for a date input instead.
"""

import re
from datetime import datetime
from typing import Any

_MONTHS = (
    "January|February|March|April|May|June|July|August|"
    "September|October|November|December"
)
_MONTHS_SHORT = "Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec"

DATE_PATTERNS = [
    re.compile(r"^\d{4}$"),                       # 2023
    re.compile(r"^\d{4}-\d{2}$"),                 # 2023-06
    re.compile(r"^\d{4}-\d{2}-\d{2}$"),           # 2023-06-15
    re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$"),       # 6/15/2023
    re.compile(r"^\d{1,2}-\d{1,2}-\d{4}$"),       # 15-6-2023
    re.compile(r"^\d{1,2}\.\d{1,2}\.\d{4}$"),     # 15.6.2023
    re.compile(r"^\d{4}s$"),                      # 1990s
    re.compile(rf"^({_MONTHS})\s+\d{{1,2}},?\s+\d{{4}}$", re.IGNORECASE),        # June 15, 2023
    re.compile(rf"^\d{{1,2}}\s+({_MONTHS})\s+\d{{4}}$", re.IGNORECASE),          # 15 June 2023
    re.compile(rf"^({_MONTHS_SHORT})\s+\d{{1,2}},?\s+\d{{4}}$", re.IGNORECASE),  # Jun 15, 2023
    re.compile(rf"^\d{{1,2}}\s+({_MONTHS_SHORT})\s+\d{{4}}$", re.IGNORECASE),    # 15 Jun 2023
    re.compile(r"^(early|mid|late)\s+\d{4}s?$", re.IGNORECASE),                  # early 2000s
    re.compile(r"^c\.\s*\d{4}$", re.IGNORECASE),  # c. 2000
    re.compile(r"^circa\s+\d{4}$", re.IGNORECASE),
    re.compile(r"^\d{4}-\d{4}$"),                 # 1990-1995
    re.compile(r"^\d{4}/\d{4}$"),                 # 1990/1995
]

# Calendar formats accepted by the permissive parse
CALENDAR_FORMATS = [
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S.%fZ",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d",
    "%B %Y",
    "%b %Y",
    "%B %d %Y",
    "%b %d %Y",
    "%d %B, %Y",
    "%d %b, %Y",
    "%a, %d %b %Y %H:%M:%S GMT",
    "%a %b %d %Y",
]


def _parses_as_calendar_date(value: str) -> bool:
    for fmt in CALENDAR_FORMATS:
        try:
            datetime.strptime(value, fmt)
        except ValueError:
            continue
        return True
    return False


def is_date_value(value: Any) -> bool:
    """Check whether a value looks like a date.

    Args:
        value: Literal value from the source record

    Returns:
        True for year, ISO, US, dotted, month-name, decade, circa and range
        forms, or for strings longer than 3 characters that parse as a
        calendar date
    """
    if not value or not isinstance(value, str):
        return False

    trimmed = value.strip()
    if any(pattern.match(trimmed) for pattern in DATE_PATTERNS):
        return True

    return len(trimmed) > 3 and _parses_as_calendar_date(trimmed)
