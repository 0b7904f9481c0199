from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from expense_tracker.auth import AuthService, RateLimiter
from expense_tracker.errors import (
    AuthError,
    ConflictError,
    NotFoundError,
    RateLimitedError,
    TokenError,
    ValidationError,
)
from expense_tracker.models import Base, User


class AuthSecurityTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.session = Session(self.engine)
        self.service = AuthService(
            self.session,
            jwt_secret="secret",
            session_ttl_seconds=3600,
            rate_limiter=RateLimiter(5, 300),
        )

    def tearDown(self) -> None:
        self.session.close()
        self.engine.dispose()

    def test_register_hashes_password_and_issues_token(self) -> None:
        user, token = self.service.register_user("Ada Lovelace", "ada@example.com", "StrongPass123")
        self.assertNotEqual(user.password_hash, "StrongPass123")
        self.assertTrue(user.password_hash.startswith("$argon2"))
        self.assertEqual(user.role, "user")
        self.assertFalse(user.is_premium)
        payload = self.service.verify_token(token)
        self.assertEqual(payload["sub"], str(user.id))

    def test_register_then_login_succeeds(self) -> None:
        registered, _ = self.service.register_user("Ada", "ada@example.com", "StrongPass123")
        user, token = self.service.authenticate("ada@example.com", "StrongPass123")
        self.assertEqual(user.id, registered.id)
        self.assertEqual(self.service.user_id_for_token(token), registered.id)

    def test_register_requires_all_fields(self) -> None:
        for args in (("", "a@example.com", "pw"), ("Ada", "  ", "pw"), ("Ada", "a@example.com", None)):
            with self.assertRaises(ValidationError):
                self.service.register_user(*args)

    def test_register_rejects_duplicate_email(self) -> None:
        self.service.register_user("Ada", "ada@example.com", "StrongPass123")
        with self.assertRaises(ConflictError):
            self.service.register_user("Other", "ada@example.com", "Another123")

    def test_email_is_case_sensitive(self) -> None:
        self.service.register_user("Ada", "ada@example.com", "StrongPass123")
        user, _ = self.service.register_user("Ada Upper", "Ada@example.com", "StrongPass123")
        self.assertEqual(user.email, "Ada@example.com")
        self.assertEqual(self.session.query(User).count(), 2)

    def test_wrong_password_and_unknown_email_are_indistinguishable(self) -> None:
        self.service.register_user("Ada", "ada@example.com", "StrongPass123")
        with self.assertRaises(AuthError) as wrong_password:
            self.service.authenticate("ada@example.com", "WrongPass")
        with self.assertRaises(AuthError) as unknown_email:
            self.service.authenticate("nobody@example.com", "StrongPass123")
        self.assertEqual(type(wrong_password.exception), type(unknown_email.exception))
        self.assertEqual(wrong_password.exception.code, unknown_email.exception.code)
        self.assertEqual(wrong_password.exception.message, unknown_email.exception.message)
        self.assertEqual(wrong_password.exception.status_code, 400)

    def test_unknown_email_still_runs_password_hash(self) -> None:
        self.service.register_user("Ada", "ada@example.com", "StrongPass123")
        with patch("expense_tracker.auth.service.verify_password", return_value=False) as verify:
            with self.assertRaises(AuthError):
                self.service.authenticate("ada@example.com", "WrongPass")
            self.assertEqual(verify.call_count, 1)
            with self.assertRaises(AuthError):
                self.service.authenticate("nobody@example.com", "WrongPass")
            self.assertEqual(verify.call_count, 2)
        self.assertTrue(verify.call_args.args[1].startswith("$argon2"))

    def test_login_requires_fields(self) -> None:
        with self.assertRaises(ValidationError):
            self.service.authenticate("", "pw")

    def test_token_expiry(self) -> None:
        user, _ = self.service.register_user("Ada", "expire@example.com", "Password1!")
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        token = self.service.issue_token_for_user(user, past)
        with self.assertRaises(TokenError) as ctx:
            self.service.verify_token(token)
        self.assertEqual(ctx.exception.code, "token_expired")
        self.assertEqual(ctx.exception.status_code, 401)

    def test_token_signed_with_other_secret_is_rejected(self) -> None:
        user, _ = self.service.register_user("Ada", "ada@example.com", "Password1!")
        other = AuthService(self.session, jwt_secret="other-secret")
        token = other.issue_token_for_user(user)
        with self.assertRaises(TokenError):
            self.service.verify_token(token)

    def test_get_profile_unknown_user(self) -> None:
        with self.assertRaises(NotFoundError):
            self.service.get_profile(999)

    def test_rate_limit_blocks(self) -> None:
        limited_service = AuthService(self.session, jwt_secret="secret", rate_limiter=RateLimiter(2, 300))
        limited_service.register_user("Ada", "limit@example.com", "Password1!")
        for _ in range(2):
            with self.assertRaises(AuthError):
                limited_service.authenticate("limit@example.com", "bad")
        with self.assertRaises(RateLimitedError):
            limited_service.authenticate("limit@example.com", "Password1!")

    def test_rate_limiter_window_expires(self) -> None:
        limiter = RateLimiter(1, 60)
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        self.assertTrue(limiter.allow("key", start))
        self.assertFalse(limiter.allow("key", start + timedelta(seconds=30)))
        self.assertTrue(limiter.allow("key", start + timedelta(seconds=120)))


    def test_rate_limiter_drops_idle_keys(self) -> None:
        limiter = RateLimiter(3, 60)
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        for index in range(100):
            limiter.allow(f"user{index}@example.com", start)
        self.assertEqual(len(limiter._attempts), 100)
        limiter.allow("fresh@example.com", start + timedelta(seconds=61))
        self.assertEqual(list(limiter._attempts), ["fresh@example.com"])


if __name__ == "__main__":
    unittest.main()
