from app.models.banned_ip import BannedIp
from app.models.security_log import SecurityLog, SecuritySeverity
from app.models.user import User, UserRole

__all__ = [
    "BannedIp",
    "SecurityLog",
    "SecuritySeverity",
    "User",
    "UserRole",
]
