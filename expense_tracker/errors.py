"""Error taxonomy shared by the services and rendered by the HTTP layer."""

from __future__ import annotations


class ServiceError(Exception):
    status_code = 500
    code = "server_error"
    default_message = "Server Error"

    def __init__(self, message: str | None = None, code: str | None = None) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class ValidationError(ServiceError):
    status_code = 400
    code = "validation_error"
    default_message = "All fields are required"


class ConflictError(ServiceError):
    status_code = 400
    code = "conflict"
    default_message = "Email already in use"


class AuthError(ServiceError):
    status_code = 400
    code = "invalid_credentials"
    default_message = "Invalid credentials"


class TokenError(AuthError):
    status_code = 401
    code = "invalid_token"
    default_message = "Not authorized"


class RateLimitedError(ServiceError):
    status_code = 429
    code = "rate_limited"
    default_message = "Too many attempts, try again later"


class NotFoundError(ServiceError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class InvalidCodeError(ServiceError):
    status_code = 400
    code = "invalid_otp"
    default_message = "Invalid OTP."


class ExpiredError(ServiceError):
    status_code = 400
    code = "otp_expired"
    default_message = "OTP has expired."


class SamePasswordError(ServiceError):
    status_code = 400
    code = "same_password"
    default_message = "New password must be different from old password"


class SignatureError(ServiceError):
    status_code = 400
    code = "invalid_signature"
    default_message = "Invalid signature"


class DeliveryError(ServiceError):
    status_code = 500
    code = "delivery_failed"
    default_message = "Something went wrong. Please try again."


class ProviderError(DeliveryError):
    status_code = 502
    code = "provider_error"
    default_message = "Payment provider request failed"


class ConfigError(ServiceError):
    status_code = 500
    code = "not_configured"
    default_message = "Pricing not configured"


class ForbiddenError(ServiceError):
    status_code = 403
    code = "premium_required"
    default_message = "Premium feature. Please upgrade to access."
