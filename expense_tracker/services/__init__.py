from .access import AccessGate
from .entitlement import EntitlementState
from .notifier import Notifier, SmtpNotifier, build_notifier
from .razorpay import RazorpayClient
from .subscriptions import (
    CheckoutHandle,
    IgnoredEvent,
    PaymentFailed,
    SubscriptionCancelled,
    SubscriptionCharged,
    SubscriptionReconciler,
    WebhookEvent,
    parse_event,
    sign,
)

__all__ = [
    "AccessGate",
    "CheckoutHandle",
    "EntitlementState",
    "IgnoredEvent",
    "Notifier",
    "PaymentFailed",
    "RazorpayClient",
    "SmtpNotifier",
    "SubscriptionCancelled",
    "SubscriptionCharged",
    "SubscriptionReconciler",
    "WebhookEvent",
    "build_notifier",
    "parse_event",
    "sign",
]
