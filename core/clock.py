"""
core/clock.py -- Injectable time source.

Lockout expiry, TOTP windows, session expiry and audit windows all depend on
"now". Components take a Clock in their constructor so tests can pin and
advance time instead of sleeping.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        """Return the current time as a timezone-aware UTC datetime."""
        ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
