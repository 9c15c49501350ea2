from todo_api.core.database import Base
from todo_api.models.todos import Todo
from todo_api.models.users import PasswordResetToken, RefreshToken, User

__all__ = [
    "Base",
    "PasswordResetToken",
    "RefreshToken",
    "Todo",
    "User",
]
