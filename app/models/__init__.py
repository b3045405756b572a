from .user import User
from .movie import Movie
from .email_schedule import EmailSchedule

__all__ = [
    "User",
    "Movie",
    "EmailSchedule",
]
