"""Small helpers shared by the backend and the bot."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """
    Current UTC time without tzinfo.

    Job timestamps (next_run, last_run, sent_at) are stored naive and
    read as UTC; conversion to a caller's zone happens only in recurrence
    and rendering.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)
