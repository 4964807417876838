"""Daily-sequenced task keys: ``T-YYYYMMDD-NN``."""
from __future__ import annotations

import re
from datetime import datetime
from typing import Tuple

from dateutil.relativedelta import relativedelta

from .dates import start_of_day

TASK_KEY_RE = re.compile(r"^T-\d{8}-\d+$")


class KeyAllocationError(Exception):
    """Raised when no free key could be inserted after the allowed retries."""


def is_task_key(text: str) -> bool:
    return bool(TASK_KEY_RE.match(text))


def day_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """Return ``[start, end)`` of the calendar day containing ``now``."""
    start = start_of_day(now)
    return start, start + relativedelta(days=+1)


def allocate_key(now: datetime, existing_count: int) -> str:
    """Build the key for the ``existing_count + 1``-th task created on ``now``'s day.

    The sequence is zero-padded to two digits and simply grows past 99.
    """
    return f"T-{now:%Y%m%d}-{existing_count + 1:02d}"
