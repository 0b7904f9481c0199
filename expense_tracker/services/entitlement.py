from __future__ import annotations

from datetime import datetime, timezone

from expense_tracker.models import User
from expense_tracker.utils import normalize_time


class EntitlementState:
    """Premium flag and expiry on a user record. Callers persist the change."""

    @staticmethod
    def activate(user: User, expires_at: datetime | None = None) -> None:
        user.is_premium = True
        if expires_at is not None:
            user.premium_expires_at = normalize_time(expires_at)

    @staticmethod
    def deactivate(user: User) -> None:
        user.is_premium = False
        user.premium_expires_at = None

    @staticmethod
    def is_active(user: User, now: datetime | None = None) -> bool:
        if user.is_premium:
            return True
        expires_at = normalize_time(user.premium_expires_at)
        if expires_at is None:
            return False
        moment = normalize_time(now) or datetime.now(timezone.utc)
        return expires_at > moment
