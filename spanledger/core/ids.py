# spanledger/core/ids.py
import os
import re
import secrets
import time
from datetime import datetime, timezone

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def generate_id() -> str:
    """
    Time-ordered span id in UUIDv7 layout.

    The first 12 hex digits are the millisecond clock, so ids sort chronologically;
    the remaining digits come from 10 random bytes.
    """
    ts_hex = f"{int(time.time() * 1000):012x}"
    rand_hex = os.urandom(10).hex()
    return f"{ts_hex[:8]}-{ts_hex[8:12]}-7{rand_hex[:3]}-{rand_hex[3:7]}-{rand_hex[7:19]}"


def generate_user_id(name: str) -> str:
    """``user-<name with only [a-z0-9]>-<3 random base36 chars>``"""
    sanitized = re.sub(r"[^a-z0-9]", "", name.lower())
    short = "".join(secrets.choice(_BASE36) for _ in range(3))
    return f"user-{sanitized}-{short}"


def utc_now() -> str:
    """ISO 8601 UTC with millis and a ``Z`` suffix, e.g. ``2026-02-13T12:00:00.000Z``."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
