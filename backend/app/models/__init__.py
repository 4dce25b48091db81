from app.models.user import User
from app.models.user_analytics import UserAnalytics

__all__ = [
    "User",
    "UserAnalytics",
]
