from datetime import datetime


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open windows [start, end) overlap iff each starts before the other ends.

    Touching windows (a_end == b_start) do not overlap.
    """
    return a_start < b_end and b_start < a_end


def contains(start: datetime, end: datetime, instant: datetime) -> bool:
    return start <= instant < end
