"""Checkout creation and provider-event reconciliation for premium subscriptions."""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Union

from sqlalchemy.orm import Session

from expense_tracker.errors import ConfigError, SignatureError, ValidationError
from expense_tracker.logging import AuditLogger, get_logger, log_event
from expense_tracker.models import User
from expense_tracker.services.entitlement import EntitlementState
from expense_tracker.services.razorpay import RazorpayClient

logger = get_logger("subscriptions")


@dataclass(frozen=True)
class SubscriptionCharged:
    subscription_id: str | None
    customer_id: str | None
    period_end: datetime | None = None


@dataclass(frozen=True)
class SubscriptionCancelled:
    subscription_id: str | None
    customer_id: str | None


@dataclass(frozen=True)
class PaymentFailed:
    payment_id: str | None
    customer_id: str | None


@dataclass(frozen=True)
class IgnoredEvent:
    event_type: str


WebhookEvent = Union[SubscriptionCharged, SubscriptionCancelled, PaymentFailed, IgnoredEvent]

EVENT_TYPES = {
    "subscription.charged": SubscriptionCharged,
    "subscription.cancelled": SubscriptionCancelled,
    "payment.failed": PaymentFailed,
}


@dataclass(frozen=True)
class CheckoutHandle:
    subscription_id: str
    key_id: str | None
    subscription: Mapping[str, Any]


def sign(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def signature_matches(secret: str, message: bytes, signature: str | None) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(sign(secret, message).encode(), signature.strip().encode("utf-8", "surrogatepass"))


def parse_event(envelope: Mapping[str, Any]) -> WebhookEvent:
    event_type = envelope.get("event")
    if not isinstance(event_type, str) or not event_type:
        return IgnoredEvent("")
    payload = envelope.get("payload") if isinstance(envelope.get("payload"), Mapping) else {}
    kind = EVENT_TYPES.get(event_type)
    if kind is SubscriptionCharged:
        entity = _entity(payload, "subscription")
        return SubscriptionCharged(
            subscription_id=entity.get("id"),
            customer_id=entity.get("customer_id"),
            period_end=_from_unix(entity.get("current_end")),
        )
    if kind is SubscriptionCancelled:
        entity = _entity(payload, "subscription")
        return SubscriptionCancelled(subscription_id=entity.get("id"), customer_id=entity.get("customer_id"))
    if kind is PaymentFailed:
        entity = _entity(payload, "payment")
        return PaymentFailed(payment_id=entity.get("id"), customer_id=entity.get("customer_id"))
    return IgnoredEvent(event_type)


def _entity(payload: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    wrapper = payload.get(name)
    if not isinstance(wrapper, Mapping):
        return {}
    entity = wrapper.get("entity")
    return entity if isinstance(entity, Mapping) else {}


def _from_unix(value: Any) -> datetime | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


class SubscriptionReconciler:
    def __init__(
        self,
        session: Session,
        provider: RazorpayClient,
        plan_id: str | None,
        key_secret: str | None,
        webhook_secret: str | None = None,
        allow_unsigned_webhooks: bool = False,
        total_count: int = 12,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self.session = session
        self.provider = provider
        self.plan_id = plan_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.allow_unsigned_webhooks = allow_unsigned_webhooks
        self.total_count = total_count
        self.audit_logger = audit_logger or AuditLogger(session)
        self._handlers: dict[type, Callable[[Any], None]] = {
            SubscriptionCharged: self._on_charged,
            SubscriptionCancelled: self._on_cancelled,
            PaymentFailed: self._on_payment_failed,
            IgnoredEvent: self._on_ignored,
        }
        unhandled = set(WebhookEvent.__args__) - set(self._handlers)
        if unhandled:
            raise TypeError(f"Missing webhook handlers for: {sorted(t.__name__ for t in unhandled)}")

    def create_checkout(self, user: User) -> CheckoutHandle:
        if not self.plan_id:
            raise ConfigError("Pricing not configured", code="plan_not_configured")

        customer_id = user.billing_customer_id
        if not customer_id:
            customer = self.provider.create_customer(user.full_name, user.email)
            customer_id = str(customer["id"])
            user.billing_customer_id = customer_id
            self._commit()

        subscription = self.provider.create_subscription(self.plan_id, customer_id, self.total_count)
        subscription_id = str(subscription["id"])
        user.billing_subscription_id = subscription_id
        # Entitlement is granted before payment capture; a later webhook corrects it.
        EntitlementState.activate(user)
        self._record(user, "activated", "checkout", {"customer_id": customer_id})
        log_event("subscription", "checkout", "created", subject=str(user.id), metadata={"subscription_id": subscription_id})
        return CheckoutHandle(subscription_id=subscription_id, key_id=self.provider.key_id, subscription=subscription)

    def verify_checkout(self, user: User, payment_id: str, subscription_id: str, signature: str) -> None:
        if not payment_id or not subscription_id or not signature:
            raise ValidationError("Missing verification parameters", code="missing_verification_parameters")
        if not self.key_secret:
            raise ConfigError("Payment provider credentials not configured", code="provider_not_configured")
        message = f"{payment_id}|{subscription_id}".encode()
        if not signature_matches(self.key_secret, message, signature):
            log_event("subscription", "verify", "invalid_signature", subject=str(user.id))
            raise SignatureError()
        EntitlementState.activate(user)
        user.billing_subscription_id = subscription_id
        self._record(user, "activated", "checkout_verification", {"payment_id": payment_id})

    def handle_webhook(self, raw_body: bytes, signature_header: str | None) -> WebhookEvent:
        if self.webhook_secret:
            if not signature_matches(self.webhook_secret, raw_body, signature_header):
                logger.error("Invalid webhook signature")
                raise SignatureError()
        elif not self.allow_unsigned_webhooks:
            raise ConfigError("Webhook secret not configured", code="webhook_not_configured")
        else:
            logger.warning("Processing unsigned webhook: no webhook secret configured")

        try:
            envelope = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValidationError("Webhook body is not valid JSON", code="invalid_event") from exc
        if not isinstance(envelope, Mapping):
            raise ValidationError("Webhook body must be a JSON object", code="invalid_event")

        event = parse_event(envelope)
        self._handlers[type(event)](event)
        return event

    def _on_charged(self, event: SubscriptionCharged) -> None:
        user = self._user_for_customer(event.customer_id)
        if user is None:
            return
        EntitlementState.activate(user, event.period_end)
        self._record(user, "activated", "webhook:subscription.charged", {"subscription_id": event.subscription_id})

    def _on_cancelled(self, event: SubscriptionCancelled) -> None:
        user = self._user_for_customer(event.customer_id)
        if user is None:
            return
        EntitlementState.deactivate(user)
        user.billing_subscription_id = None
        self._record(user, "deactivated", "webhook:subscription.cancelled", {"subscription_id": event.subscription_id})

    def _on_payment_failed(self, event: PaymentFailed) -> None:
        log_event("subscription", "webhook", "payment_failed", metadata={"payment_id": event.payment_id, "customer_id": event.customer_id})

    def _on_ignored(self, event: IgnoredEvent) -> None:
        logger.debug("Ignoring webhook event %s", event.event_type)

    def _user_for_customer(self, customer_id: str | None) -> User | None:
        if not customer_id:
            return None
        user = self.session.query(User).filter_by(billing_customer_id=customer_id).first()
        if user is None:
            log_event("subscription", "webhook", "unmatched_customer", metadata={"customer_id": customer_id})
        return user

    def _record(self, user: User, action: str, source: str, context: Mapping[str, Any]) -> None:
        try:
            self.audit_logger.record_entitlement(user, action, source, context)
        except Exception:
            self.session.rollback()
            raise

    def _commit(self) -> None:
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
