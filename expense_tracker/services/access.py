from __future__ import annotations

from datetime import datetime

from expense_tracker.errors import ForbiddenError
from expense_tracker.logging import log_event
from expense_tracker.models import User
from expense_tracker.services.entitlement import EntitlementState


class AccessGate:
    def check(self, user: User, now: datetime | None = None) -> User:
        if not EntitlementState.is_active(user, now):
            log_event("access", "premium_gate", "denied", subject=str(user.id))
            raise ForbiddenError()
        return user
