from .auth import UserCreate, UserLogin, UserResponse, TokenResponse, RefreshRequest
from .movie import MovieCreate, MovieUpdate
from .email_schedule import EmailScheduleResponse

__all__ = [
    "UserCreate", "UserLogin", "UserResponse", "TokenResponse", "RefreshRequest",
    "MovieCreate", "MovieUpdate",
    "EmailScheduleResponse",
]
