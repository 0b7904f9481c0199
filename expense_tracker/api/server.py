from __future__ import annotations

from datetime import datetime
from functools import wraps
from typing import Any, Mapping

from flask import Flask, g, jsonify, request
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.exceptions import HTTPException

from expense_tracker.auth import AuthService, InMemoryStore, KeyValueStore, OtpService, RateLimiter
from expense_tracker.config import Settings, load_settings
from expense_tracker.errors import ServiceError, TokenError
from expense_tracker.logging import AuditLogger, get_logger
from expense_tracker.models import Base, User
from expense_tracker.services import (
    AccessGate,
    EntitlementState,
    Notifier,
    RazorpayClient,
    SubscriptionReconciler,
    build_notifier,
)
from expense_tracker.utils import normalize_time, optional_field

API_PREFIX = "/api/v1"
WEBHOOK_SIGNATURE_HEADER = "X-Razorpay-Signature"

logger = get_logger("api")


def _isoformat(value: datetime | None) -> str | None:
    value = normalize_time(value)
    return value.isoformat() if value else None


def serialize_user(user: User) -> Mapping[str, Any]:
    return {
        "id": user.id,
        "fullName": user.full_name,
        "email": user.email,
        "profileImageUrl": user.profile_image_url,
        "role": user.role,
        "isPremium": bool(user.is_premium),
        "premiumExpiresAt": _isoformat(user.premium_expires_at),
        "createdAt": _isoformat(user.created_at),
        "updatedAt": _isoformat(user.updated_at),
    }


def _json_body() -> Mapping[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def create_api_app(
    settings: Settings | None = None,
    notifier: Notifier | None = None,
    payment_provider: RazorpayClient | None = None,
    otp_store: KeyValueStore | None = None,
) -> Flask:
    settings = settings or load_settings()
    app = Flask(__name__)

    engine = create_engine(settings.database_url, future=True, pool_pre_ping=True)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    Base.metadata.create_all(engine)

    rate_limiter = RateLimiter(settings.login_rate_limit_max, settings.login_rate_limit_window_seconds)
    store = otp_store if otp_store is not None else InMemoryStore()
    resolved_notifier = notifier or build_notifier(settings)
    provider = payment_provider or RazorpayClient(
        settings.razorpay_key_id,
        settings.razorpay_key_secret,
        base_url=settings.razorpay_base_url,
    )
    gate = AccessGate()

    app.config["SESSION_FACTORY"] = SessionLocal
    app.config["OTP_STORE"] = store

    def get_session() -> Session:
        if "db" not in g:
            g.db = SessionLocal()
        return g.db

    def auth_service() -> AuthService:
        return AuthService(
            get_session(),
            jwt_secret=settings.jwt_secret,
            session_ttl_seconds=settings.session_ttl_seconds,
            rate_limiter=rate_limiter,
        )

    def otp_service() -> OtpService:
        return OtpService(get_session(), store, resolved_notifier, ttl_seconds=settings.otp_ttl_seconds)

    def reconciler() -> SubscriptionReconciler:
        db = get_session()
        return SubscriptionReconciler(
            db,
            provider,
            plan_id=settings.razorpay_plan_id,
            key_secret=settings.razorpay_key_secret,
            webhook_secret=settings.razorpay_webhook_secret,
            allow_unsigned_webhooks=settings.allow_unsigned_webhooks,
            total_count=settings.razorpay_total_count,
            audit_logger=AuditLogger(db),
        )

    def require_auth(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            scheme, _, token = request.headers.get("Authorization", "").partition(" ")
            if scheme.lower() != "bearer" or not token.strip():
                raise TokenError()
            service = auth_service()
            g.current_user = service.get_profile(service.user_id_for_token(token.strip()))
            return fn(*args, **kwargs)

        return wrapper

    def require_premium(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            gate.check(g.current_user)
            return fn(*args, **kwargs)

        return wrapper

    @app.teardown_appcontext
    def close_session(_exc):
        db = g.pop("db", None)
        if db is not None:
            db.close()

    @app.errorhandler(ServiceError)
    def handle_service_error(exc: ServiceError):
        return jsonify({"message": exc.message, "error": exc.code}), exc.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"message": "Server Error"}), 500

    @app.after_request
    def after_request(response):
        response.headers["Access-Control-Allow-Origin"] = settings.client_url
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.app_env == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    @app.get("/healthz")
    def health():
        try:
            with engine.connect() as connection:
                connection.execute(text("select 1"))
        except Exception:
            logger.exception("Database health check failed")
            return jsonify({"status": "database_unavailable"}), 503
        return jsonify({"status": "ok"})

    @app.post(f"{API_PREFIX}/auth/register")
    def register():
        data = _json_body()
        user, token = auth_service().register_user(
            data.get("fullName"),
            data.get("email"),
            data.get("password"),
            profile_image_url=optional_field(data, "profileImageUrl"),
        )
        return jsonify({"id": user.id, "user": serialize_user(user), "token": token}), 201

    @app.post(f"{API_PREFIX}/auth/login")
    def login():
        data = _json_body()
        user, token = auth_service().authenticate(data.get("email"), data.get("password"))
        return jsonify({"id": user.id, "user": serialize_user(user), "token": token})

    @app.get(f"{API_PREFIX}/auth/me")
    @require_auth
    def me():
        return jsonify(serialize_user(g.current_user))

    @app.post(f"{API_PREFIX}/auth/send-otp")
    def send_otp():
        data = _json_body()
        otp_service().request_reset(data.get("email"))
        return jsonify({"message": "OTP sent successfully to your email."})

    @app.post(f"{API_PREFIX}/auth/reset-password")
    def reset_password():
        data = _json_body()
        otp_service().verify_and_reset(data.get("email"), optional_field(data, "otp"), data.get("newPassword"))
        return jsonify({"message": "Password updated successfully."})

    @app.post(f"{API_PREFIX}/subscription/create-checkout-session")
    @require_auth
    def create_checkout_session():
        handle = reconciler().create_checkout(g.current_user)
        return jsonify(
            {
                "subscriptionId": handle.subscription_id,
                "subscription": dict(handle.subscription),
                "keyId": handle.key_id,
            }
        )

    @app.post(f"{API_PREFIX}/subscription/verify")
    @require_auth
    def verify_subscription():
        data = _json_body()
        reconciler().verify_checkout(
            g.current_user,
            optional_field(data, "paymentId") or optional_field(data, "razorpay_payment_id"),
            optional_field(data, "subscriptionId") or optional_field(data, "razorpay_subscription_id"),
            optional_field(data, "signature") or optional_field(data, "razorpay_signature"),
        )
        return jsonify({"verified": True})

    @app.post(f"{API_PREFIX}/subscription/webhook")
    def subscription_webhook():
        raw_body = request.get_data(cache=True)
        reconciler().handle_webhook(raw_body, request.headers.get(WEBHOOK_SIGNATURE_HEADER))
        return jsonify({"received": True})

    @app.get(f"{API_PREFIX}/subscription/status")
    @require_auth
    def subscription_status():
        user = g.current_user
        return jsonify(
            {
                "isPremium": bool(user.is_premium),
                "premiumExpiresAt": _isoformat(user.premium_expires_at),
                "active": EntitlementState.is_active(user),
            }
        )

    @app.get(f"{API_PREFIX}/premium/access")
    @require_auth
    @require_premium
    def premium_access():
        return jsonify({"access": "granted"})

    return app
