"""
Cover image state.

A movie's cover_image column holds either the public URL of its image or the
sentinel ``pending_<epoch millis>`` written when the movie was created without
one. The sentinel format is persisted and must stay bit-compatible; this module
is the only place that reads or writes it.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from ..clock import from_epoch_millis, to_epoch_millis

PENDING_PREFIX = "pending_"
_PENDING_PATTERN = re.compile(r"^pending_(\d+)$")


@dataclass(frozen=True)
class PendingImage:
    """Movie created, image not uploaded yet."""
    created_at: Optional[datetime]  # None when the sentinel is unreadable

    def to_column(self) -> str:
        if self.created_at is None:
            raise ValueError("Cannot serialize a pending image without a creation time")
        return f"{PENDING_PREFIX}{to_epoch_millis(self.created_at)}"

    def age(self, now: datetime):
        if self.created_at is None:
            return None
        return now - self.created_at


@dataclass(frozen=True)
class CompleteImage:
    """Movie has an uploaded image at ``url``."""
    url: str

    def to_column(self) -> str:
        return self.url


ImageState = Union[PendingImage, CompleteImage]


def pending_since(now: datetime) -> PendingImage:
    # Millisecond precision, as stored
    return PendingImage(created_at=from_epoch_millis(to_epoch_millis(now)))


def parse_image_state(value: Optional[str]) -> ImageState:
    """Parse a cover_image column value."""
    if value is None or value.startswith(PENDING_PREFIX):
        match = _PENDING_PATTERN.match(value or "")
        if match is None:
            return PendingImage(created_at=None)
        return PendingImage(created_at=from_epoch_millis(int(match.group(1))))
    return CompleteImage(url=value)


def is_pending_column(column):
    """SQL expression selecting rows whose column holds a pending sentinel."""
    return column.startswith(PENDING_PREFIX, autoescape=True)
