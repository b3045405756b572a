import re

from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import List, Optional

from ..clock import as_naive_utc

_URL_PATTERN = re.compile(r"^https?://[^\s/$.?#][^\s]*$", re.IGNORECASE)


def _check_url(value: Optional[str]) -> Optional[str]:
    if value is not None and not _URL_PATTERN.match(value):
        raise ValueError("must be an http(s) URL")
    return value


class MovieCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    original_title: str = Field(min_length=1, max_length=255)
    popularity: float = 0
    vote_count: int = Field(default=0, ge=0)
    score: float = Field(default=0, ge=0, le=100)
    tagline: str = Field(default="", max_length=500)
    synopsis: str = Field(default="", max_length=1000)
    genres: List[str] = []
    release_date: datetime
    duration: int = Field(ge=1)
    status: str = ""
    language: str = ""
    budget: int = Field(default=0, ge=0)
    revenue: int = Field(default=0, ge=0)
    profit: int = 0
    trailer_url: str = ""

    @field_validator("release_date")
    @classmethod
    def release_date_utc(cls, value: datetime) -> datetime:
        return as_naive_utc(value)

    @field_validator("trailer_url")
    @classmethod
    def trailer_url_is_url(cls, value: str) -> str:
        return _check_url(value) if value else value


class MovieUpdate(BaseModel):
    """Partial update; the cover image has its own endpoints."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    original_title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    popularity: Optional[float] = None
    vote_count: Optional[int] = Field(default=None, ge=0)
    score: Optional[float] = Field(default=None, ge=0, le=100)
    tagline: Optional[str] = Field(default=None, max_length=500)
    synopsis: Optional[str] = Field(default=None, max_length=1000)
    genres: Optional[List[str]] = None
    release_date: Optional[datetime] = None
    duration: Optional[int] = Field(default=None, ge=1)
    status: Optional[str] = None
    language: Optional[str] = None
    budget: Optional[int] = Field(default=None, ge=0)
    revenue: Optional[int] = Field(default=None, ge=0)
    profit: Optional[int] = None
    trailer_url: Optional[str] = None

    @field_validator("release_date")
    @classmethod
    def release_date_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(value)

    @field_validator("trailer_url")
    @classmethod
    def trailer_url_is_url(cls, value: Optional[str]) -> Optional[str]:
        return _check_url(value) if value else value
