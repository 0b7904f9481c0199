from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from sqlalchemy.orm import Session

from expense_tracker.models import EntitlementLog, User


class AuditLogger:
    """Persists entitlement changes together with the user row they describe.

    ``record_entitlement`` commits the pending session state, so the user
    mutation and its log entry land in one transaction or not at all.
    """

    def __init__(self, session: Session, logger: logging.Logger | None = None) -> None:
        self.session = session
        self.logger = logger or logging.getLogger("expense_tracker.audit")

    def record_entitlement(
        self,
        user: User,
        action: str,
        source: str,
        context: Mapping[str, Any] | None = None,
    ) -> EntitlementLog:
        entry = EntitlementLog(
            user_id=user.id,
            action=action,
            source=source,
            is_premium=bool(user.is_premium),
            premium_expires_at=user.premium_expires_at,
            subscription_id=user.billing_subscription_id,
            context=dict(context) if context else {},
        )
        self._persist(entry, "entitlement")
        return entry

    def _persist(self, entry: Any, category: str) -> None:
        self.session.add(entry)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(entry)
        self._log_entry(category, entry)

    def _log_entry(self, category: str, entry: Any) -> None:
        payload = {"category": category}
        for column in entry.__table__.columns:
            payload[column.name] = getattr(entry, column.name)
        self.logger.info(json.dumps(payload, default=str))
