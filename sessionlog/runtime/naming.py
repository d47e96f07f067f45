from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

LOG_SUFFIX = ".jsonl"
SESSION_PREFIX_LEN = 8


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def session_prefix(session_id: str) -> str:
    return session_id[:SESSION_PREFIX_LEN]


def log_filename(session_id: str, started_at: Optional[datetime] = None) -> str:
    """
    Build "<YYYYMMDD_HHMMSS>_<prefix>.jsonl" from the session start time (UTC).
    Names sort chronologically.
    """
    ts = (started_at or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return f"{ts.strftime('%Y%m%d_%H%M%S')}_{session_prefix(session_id)}{LOG_SUFFIX}"


def filename_suffix(session_id: str) -> str:
    return f"_{session_prefix(session_id)}{LOG_SUFFIX}"
