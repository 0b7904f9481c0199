from .auth import User
from .db import Base
from .log import EntitlementLog

__all__ = [
	"Base",
	"EntitlementLog",
	"User",
]
