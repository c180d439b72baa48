"""
Common helpers: UTC clock, whole-day arithmetic, expiry wording and
SHA-256 hex fingerprints.

Used by:
  - crypto/pki.py (validity windows)
  - ops.py (list / renew decisions)
  - cli.py (fingerprints in operator output)
"""

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

SECONDS_PER_DAY = 24 * 60 * 60


def utc_now() -> datetime:
    """Current UTC time, truncated to whole seconds (X.509 time resolution)."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def whole_days(delta: timedelta) -> int:
    """Number of whole days in delta, truncated toward zero (negative for the past)."""
    return int(delta.total_seconds() / SECONDS_PER_DAY)


def describe_expiry(not_after: datetime, now: Optional[datetime] = None) -> str:
    """
    Human-readable distance between now and not_after.

    Returns "in N days" / "in 1 day" for the future, "N days ago" /
    "1 day ago" for the past and "right now" on exact equality.
    """
    if now is None:
        now = utc_now()

    if now == not_after:
        return "right now"

    days = abs(whole_days(not_after - now))
    unit = "day" if days == 1 else "days"
    if now > not_after:
        return f"{days} {unit} ago"
    return f"in {days} {unit}"


def sha256_hex(data: Union[bytes, str]) -> str:
    """
    Compute SHA-256 digest as a lowercase hex string.

    Accepts bytes or text (UTF-8).
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()
