from learning_planner.models.user import User
from learning_planner.models.refresh_token import RefreshToken

__all__ = [
    "User",
    "RefreshToken",
]
