from .auth import router as auth_router
from .movies import router as movies_router
from .reminders import router as reminders_router

__all__ = [
    "auth_router",
    "movies_router",
    "reminders_router",
]
