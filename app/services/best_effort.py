"""
Non-fatal side effects.

Cleanup steps such as deleting an orphaned storage object must never fail
the operation they follow. They all run through ``best_effort`` so the
log-and-continue policy lives in one place.
"""
from contextlib import contextmanager

from ..logging_config import get_logger

logger = get_logger("cleanup")


@contextmanager
def best_effort(description: str, **context):
    """Run the block, logging and suppressing any exception it raises."""
    try:
        yield
    except Exception as e:
        logger.error(f"{description} failed", error=e, **context)
