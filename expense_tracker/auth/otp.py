from __future__ import annotations

import hmac
import secrets
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy.orm import Session

from expense_tracker.auth.service import hash_password, verify_password
from expense_tracker.errors import (
    ExpiredError,
    InvalidCodeError,
    NotFoundError,
    SamePasswordError,
    ValidationError,
)
from expense_tracker.logging import log_event
from expense_tracker.models import User

if TYPE_CHECKING:
    from expense_tracker.services.notifier import Notifier

OTP_TTL_SECONDS = 600
# Expired challenges stay readable this long so verification can report expiry.
OTP_RETENTION_SECONDS = 24 * 3600


@dataclass(frozen=True)
class OtpChallenge:
    email: str
    code: str
    expires_at: datetime


class KeyValueStore(Protocol):
    def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...

    def get(self, key: str) -> Any | None:
        ...

    def delete(self, key: str) -> None:
        ...


class InMemoryStore:
    """Process-local store; entries are lost on restart.

    Entries past their ttl are evicted lazily on read. There is no background
    sweeper.
    """

    def __init__(self) -> None:
        self._items: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        with self._lock:
            self._items[key] = (value, time.monotonic() + ttl_seconds)

    def get(self, key: str) -> Any | None:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, deadline = item
            if time.monotonic() > deadline:
                del self._items[key]
                return None
            return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def __len__(self) -> int:
        return len(self._items)


class OtpService:
    def __init__(
        self,
        session: Session,
        store: KeyValueStore,
        notifier: "Notifier",
        ttl_seconds: int = OTP_TTL_SECONDS,
        retention_seconds: int = OTP_RETENTION_SECONDS,
    ) -> None:
        self.session = session
        self.store = store
        self.notifier = notifier
        self.ttl_seconds = ttl_seconds
        self.retention_seconds = retention_seconds

    def request_reset(self, email: str, now: datetime | None = None) -> OtpChallenge:
        if not isinstance(email, str) or not email.strip():
            raise ValidationError("Email is required", code="missing_email")
        moment = now or datetime.now(timezone.utc)
        normalized_email = email.strip()
        user = self.session.query(User).filter_by(email=normalized_email).first()
        if not user:
            raise NotFoundError("User with this email does not exist.", code="user_not_found")

        challenge = OtpChallenge(
            email=normalized_email,
            code=generate_code(),
            expires_at=moment + timedelta(seconds=self.ttl_seconds),
        )
        self.store.put(normalized_email, challenge, self.ttl_seconds + self.retention_seconds)
        minutes = max(1, self.ttl_seconds // 60)
        self.notifier.send(
            normalized_email,
            "Your OTP for Password Reset",
            f"Your OTP to reset password is {challenge.code}. It expires in {minutes} minutes.",
        )
        log_event("otp", "issue", "sent", subject=str(user.id))
        return challenge

    def verify_and_reset(self, email: str, code: str, new_password: str, now: datetime | None = None) -> User:
        for value in (email, code, new_password):
            if not isinstance(value, str) or not value.strip():
                raise ValidationError("Email, OTP, and new password are required.")
        moment = now or datetime.now(timezone.utc)
        normalized_email = email.strip()

        challenge = self.store.get(normalized_email)
        if challenge is None:
            raise NotFoundError("No OTP request found for this email.", code="otp_not_found")
        if not hmac.compare_digest(challenge.code.encode(), code.strip().encode("utf-8", "surrogatepass")):
            log_event("otp", "verify", "invalid_code", subject=normalized_email)
            raise InvalidCodeError()
        if moment > challenge.expires_at:
            self.store.delete(normalized_email)
            log_event("otp", "verify", "expired", subject=normalized_email)
            raise ExpiredError()

        user = self.session.query(User).filter_by(email=normalized_email).first()
        if not user:
            raise NotFoundError("User not found.", code="user_not_found")
        if verify_password(new_password, user.password_hash):
            raise SamePasswordError()

        user.password_hash = hash_password(new_password)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.store.delete(normalized_email)
        log_event("otp", "verify", "password_reset", subject=str(user.id))
        return user


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))
