from .otp import InMemoryStore, KeyValueStore, OtpChallenge, OtpService, generate_code
from .service import AuthService, RateLimiter, hash_password, verify_password

__all__ = [
    "AuthService",
    "InMemoryStore",
    "KeyValueStore",
    "OtpChallenge",
    "OtpService",
    "RateLimiter",
    "generate_code",
    "hash_password",
    "verify_password",
]
