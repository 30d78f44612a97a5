import math
from datetime import datetime, timedelta
from typing import Optional

from qbank_attempts.core.database import utcnow


def is_timed_out(started_at: datetime, time_limit_minutes: int, now: Optional[datetime] = None) -> bool:
    """True once more than ``time_limit_minutes`` have elapsed since ``started_at``. 0 means no limit."""
    if time_limit_minutes <= 0:
        return False
    now = now or utcnow()
    return (now - started_at) > timedelta(minutes=time_limit_minutes)


def elapsed_seconds(started_at: datetime, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    return max(0, math.floor((now - started_at).total_seconds() + 0.5))
