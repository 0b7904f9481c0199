from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from expense_tracker.auth import AuthService, InMemoryStore, OtpChallenge, OtpService, generate_code, verify_password
from expense_tracker.errors import (
    DeliveryError,
    ExpiredError,
    InvalidCodeError,
    NotFoundError,
    SamePasswordError,
    ValidationError,
)
from expense_tracker.models import Base


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to: str, subject: str, text: str) -> None:
        self.sent.append((to, subject, text))


class FailingNotifier:
    def send(self, to: str, subject: str, text: str) -> None:
        raise DeliveryError(code="mail_failed")


class OtpServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.session = Session(self.engine)
        self.store = InMemoryStore()
        self.notifier = RecordingNotifier()
        self.service = OtpService(self.session, self.store, self.notifier)
        self.user, _ = AuthService(self.session, jwt_secret="secret").register_user(
            "Ada", "ada@example.com", "OldPassword1!"
        )
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def tearDown(self) -> None:
        self.session.close()
        self.engine.dispose()

    def test_request_reset_stores_challenge_and_sends_code(self) -> None:
        challenge = self.service.request_reset("ada@example.com", now=self.now)
        self.assertEqual(len(challenge.code), 6)
        self.assertTrue(challenge.code.isdigit())
        self.assertEqual(challenge.expires_at, self.now + timedelta(minutes=10))
        self.assertEqual(self.store.get("ada@example.com"), challenge)
        self.assertEqual(len(self.notifier.sent), 1)
        to, subject, text = self.notifier.sent[0]
        self.assertEqual(to, "ada@example.com")
        self.assertEqual(subject, "Your OTP for Password Reset")
        self.assertIn(challenge.code, text)
        self.assertIn("10 minutes", text)

    def test_request_reset_unknown_email(self) -> None:
        with self.assertRaises(NotFoundError):
            self.service.request_reset("nobody@example.com")
        self.assertEqual(self.notifier.sent, [])

    def test_request_reset_requires_email(self) -> None:
        with self.assertRaises(ValidationError):
            self.service.request_reset("  ")

    def test_new_request_overwrites_pending_challenge(self) -> None:
        with patch("expense_tracker.auth.otp.generate_code", side_effect=["111111", "222222"]):
            self.service.request_reset("ada@example.com", now=self.now)
            self.service.request_reset("ada@example.com", now=self.now)
        self.assertEqual(len(self.store), 1)
        self.assertEqual(self.store.get("ada@example.com").code, "222222")
        with self.assertRaises(InvalidCodeError):
            self.service.verify_and_reset("ada@example.com", "111111", "NewPassword1!", now=self.now)

    def test_delivery_failure_surfaces(self) -> None:
        service = OtpService(self.session, self.store, FailingNotifier())
        with self.assertRaises(DeliveryError):
            service.request_reset("ada@example.com")

    def test_round_trip_resets_password_and_consumes_code(self) -> None:
        challenge = self.service.request_reset("ada@example.com", now=self.now)
        user = self.service.verify_and_reset(
            "ada@example.com", challenge.code, "NewPassword1!", now=self.now + timedelta(minutes=5)
        )
        self.assertTrue(verify_password("NewPassword1!", user.password_hash))
        self.assertFalse(verify_password("OldPassword1!", user.password_hash))
        self.assertIsNone(self.store.get("ada@example.com"))
        with self.assertRaises(NotFoundError):
            self.service.verify_and_reset("ada@example.com", challenge.code, "Another1!", now=self.now)

    def test_code_valid_exactly_at_expiry(self) -> None:
        challenge = self.service.request_reset("ada@example.com", now=self.now)
        self.service.verify_and_reset("ada@example.com", challenge.code, "NewPassword1!", now=challenge.expires_at)
        self.assertIsNone(self.store.get("ada@example.com"))

    def test_invalid_code_keeps_challenge(self) -> None:
        challenge = self.service.request_reset("ada@example.com", now=self.now)
        wrong = "000000" if challenge.code != "000000" else "111111"
        with self.assertRaises(InvalidCodeError):
            self.service.verify_and_reset("ada@example.com", wrong, "NewPassword1!", now=self.now)
        self.assertEqual(self.store.get("ada@example.com"), challenge)

    def test_expired_code_is_removed(self) -> None:
        challenge = self.service.request_reset("ada@example.com", now=self.now)
        later = self.now + timedelta(minutes=11)
        with self.assertRaises(ExpiredError):
            self.service.verify_and_reset("ada@example.com", challenge.code, "NewPassword1!", now=later)
        self.assertIsNone(self.store.get("ada@example.com"))
        self.assertTrue(verify_password("OldPassword1!", self.user.password_hash))

    def test_code_mismatch_is_checked_before_expiry(self) -> None:
        challenge = self.service.request_reset("ada@example.com", now=self.now)
        wrong = "000000" if challenge.code != "000000" else "111111"
        later = self.now + timedelta(minutes=11)
        with self.assertRaises(InvalidCodeError):
            self.service.verify_and_reset("ada@example.com", wrong, "NewPassword1!", now=later)
        with self.assertRaises(ExpiredError):
            self.service.verify_and_reset("ada@example.com", challenge.code, "NewPassword1!", now=later)

    def test_same_password_is_rejected(self) -> None:
        original_hash = self.user.password_hash
        challenge = self.service.request_reset("ada@example.com", now=self.now)
        with self.assertRaises(SamePasswordError):
            self.service.verify_and_reset("ada@example.com", challenge.code, "OldPassword1!", now=self.now)
        self.session.refresh(self.user)
        self.assertEqual(self.user.password_hash, original_hash)
        self.assertEqual(self.store.get("ada@example.com"), challenge)

    def test_verify_requires_fields(self) -> None:
        with self.assertRaises(ValidationError):
            self.service.verify_and_reset("ada@example.com", "", "NewPassword1!")

    def test_verify_without_request(self) -> None:
        with self.assertRaises(NotFoundError):
            self.service.verify_and_reset("ada@example.com", "123456", "NewPassword1!")

    def test_generate_code_is_six_digits(self) -> None:
        for _ in range(50):
            code = generate_code()
            self.assertEqual(len(code), 6)
            self.assertTrue(100000 <= int(code) <= 999999)


class InMemoryStoreTests(unittest.TestCase):
    def test_put_get_delete(self) -> None:
        store = InMemoryStore()
        challenge = OtpChallenge("a@example.com", "123456", datetime.now(timezone.utc))
        store.put("a@example.com", challenge, 60)
        self.assertEqual(store.get("a@example.com"), challenge)
        store.delete("a@example.com")
        self.assertIsNone(store.get("a@example.com"))
        store.delete("a@example.com")

    def test_entries_past_ttl_are_evicted_on_read(self) -> None:
        store = InMemoryStore()
        with patch("expense_tracker.auth.otp.time.monotonic", return_value=100.0):
            store.put("key", "value", 10)
        with patch("expense_tracker.auth.otp.time.monotonic", return_value=105.0):
            self.assertEqual(store.get("key"), "value")
        with patch("expense_tracker.auth.otp.time.monotonic", return_value=111.0):
            self.assertIsNone(store.get("key"))
        self.assertEqual(len(store), 0)


if __name__ == "__main__":
    unittest.main()
