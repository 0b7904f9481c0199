from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
from passlib.hash import argon2
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from expense_tracker.errors import AuthError, ConflictError, NotFoundError, RateLimitedError, TokenError, ValidationError
from expense_tracker.logging import log_event
from expense_tracker.models import User


def hash_password(password: str) -> str:
    return argon2.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return argon2.verify(password, password_hash)


_DUMMY_HASH = hash_password("expense-tracker-unknown-user")


class RateLimiter:
    def __init__(self, max_attempts: int, window_seconds: int) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._attempts: dict[str, list[datetime]] = {}

    def allow(self, key: str, now: datetime) -> bool:
        items = self._attempts.get(key, [])
        cutoff = now - timedelta(seconds=self.window_seconds)
        filtered = [ts for ts in items if ts >= cutoff]
        for stale in [k for k, v in self._attempts.items() if k != key and (not v or v[-1] < cutoff)]:
            del self._attempts[stale]
        if len(filtered) >= self.max_attempts:
            self._attempts[key] = filtered
            return False
        filtered.append(now)
        self._attempts[key] = filtered
        return True

    def reset(self, key: str) -> None:
        self._attempts.pop(key, None)


class AuthService:
    def __init__(
        self,
        session: Session,
        jwt_secret: str,
        session_ttl_seconds: int = 3600,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.session = session
        self.jwt_secret = jwt_secret
        self.session_ttl_seconds = session_ttl_seconds
        self.rate_limiter = rate_limiter or RateLimiter(10, 60)

    def register_user(
        self,
        full_name: str,
        email: str,
        password: str,
        profile_image_url: str | None = None,
        now: datetime | None = None,
    ) -> tuple[User, str]:
        if not _present(full_name) or not _present(email) or not _present(password):
            raise ValidationError("All fields are required")
        normalized_email = email.strip()
        existing = self.session.query(User).filter_by(email=normalized_email).first()
        if existing:
            raise ConflictError("Email already in use", code="user_exists")
        user = User(
            full_name=full_name.strip(),
            email=normalized_email,
            password_hash=hash_password(password),
            profile_image_url=profile_image_url or None,
            role="user",
            is_premium=False,
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("Email already in use", code="user_exists") from exc
        self.session.refresh(user)
        log_event("auth", "register", "accepted", subject=str(user.id))
        return user, self.issue_token_for_user(user, now)

    def authenticate(self, email: str, password: str, now: datetime | None = None) -> tuple[User, str]:
        if not _present(email) or not _present(password):
            raise ValidationError("All fields are required")
        moment = now or datetime.now(timezone.utc)
        normalized_email = email.strip()
        if not self.rate_limiter.allow(normalized_email, moment):
            log_event("auth", "login", "rate_limited", subject=normalized_email)
            raise RateLimitedError()
        user = self.session.query(User).filter_by(email=normalized_email).first()
        if user is None:
            verify_password(password, _DUMMY_HASH)
        if user is None or not verify_password(password, user.password_hash):
            log_event("auth", "login", "rejected")
            raise AuthError("Invalid credentials")
        self.rate_limiter.reset(normalized_email)
        log_event("auth", "login", "accepted", subject=str(user.id))
        return user, self.issue_token_for_user(user, moment)

    def get_profile(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found", code="user_not_found")
        return user

    def issue_token_for_user(self, user: User, now: datetime | None = None) -> str:
        moment = now or datetime.now(timezone.utc)
        exp = moment + timedelta(seconds=self.session_ttl_seconds)
        payload = {"sub": str(user.id), "role": user.role, "exp": exp, "iat": moment}
        return jwt.encode(payload, self.jwt_secret, algorithm="HS256")

    def verify_token(self, token: str) -> dict:
        try:
            payload = jwt.decode(token, self.jwt_secret, algorithms=["HS256"])
        except jwt.ExpiredSignatureError as exc:
            raise TokenError("Token expired", code="token_expired") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenError("Not authorized", code="invalid_token") from exc
        return payload

    def user_id_for_token(self, token: str) -> int:
        payload = self.verify_token(token)
        try:
            return int(payload.get("sub", ""))
        except (TypeError, ValueError) as exc:
            raise TokenError("Not authorized", code="invalid_token") from exc


def _present(value: str | None) -> bool:
    return isinstance(value, str) and value.strip() != ""
