# time_utils.py
import datetime as dt
import time


def now_ts() -> int:
    return int(time.time())


def to_ts(dtobj: dt.datetime) -> int:
    # naive datetimes are taken as UTC, which is what discord.py hands out
    if dtobj.tzinfo is None:
        dtobj = dtobj.replace(tzinfo=dt.timezone.utc)
    return int(dtobj.timestamp())


def format_duration(seconds: int) -> str:
    """
    Short human-readable duration.

    - 3661 -> "1h 1m"
    - 61   -> "1m 1s"
    - 5    -> "5s"
    """
    seconds = max(0, int(seconds))

    h = seconds // 3600
    m = (seconds % 3600) // 60
    s = seconds % 60

    if h > 0:
        return f"{h}h {m}m"
    if m > 0:
        return f"{m}m {s}s"
    return f"{s}s"
