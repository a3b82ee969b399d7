from __future__ import annotations

import logging
import re
from datetime import datetime, time

logger = logging.getLogger(__name__)

_CLOCK_PATTERN = re.compile(r'^\s*(\d{1,2}):(\d{2})\s*$')


def parse_clock_time(value: str) -> int:
    """Return minutes past midnight for an "HH:MM" string."""
    match = _CLOCK_PATTERN.match(value or '')
    if not match:
        raise ValueError(f'Invalid clock time: {value!r}')
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError(f'Invalid clock time: {value!r}')
    return hours * 60 + minutes


def _minutes_of_day(now: datetime | time) -> int:
    return now.hour * 60 + now.minute


def is_quiet(enabled: bool, start_time: str, end_time: str, now: datetime | time) -> bool:
    if not enabled:
        return False

    try:
        start = parse_clock_time(start_time)
        end = parse_clock_time(end_time)
    except ValueError:
        logger.warning('Ignoring quiet hours with invalid window %r-%r', start_time, end_time)
        return False

    current = _minutes_of_day(now)
    # Overnight window, e.g. 22:00-07:00.
    if start > end:
        return current >= start or current < end
    return start <= current < end
