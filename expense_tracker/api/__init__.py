from .server import API_PREFIX, create_api_app, serialize_user

__all__ = ["API_PREFIX", "create_api_app", "serialize_user"]
