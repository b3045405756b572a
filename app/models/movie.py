"""
Movie model for tracked movie records.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Float, BigInteger, JSON, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from ..database import Base
from ..services.cover_image import ImageState, PendingImage, parse_image_state


class Movie(Base):
    __tablename__ = "movies"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), unique=True, nullable=False)
    original_title = Column(String(255), nullable=False)
    cover_image = Column(String(1000), nullable=False, index=True)  # public URL or pending_<epoch ms>
    popularity = Column(Float, default=0)
    vote_count = Column(Integer, default=0)
    score = Column(Float, default=0)  # 0-100
    tagline = Column(String(500), default="")
    synopsis = Column(Text, default="")
    genres = Column(JSON, default=list)
    release_date = Column(DateTime, nullable=False, index=True)
    duration = Column(Integer, nullable=False)  # minutes
    status = Column(String(50), default="")
    language = Column(String(50), default="")
    budget = Column(BigInteger, default=0)
    revenue = Column(BigInteger, default=0)
    profit = Column(BigInteger, default=0)
    trailer_url = Column(String(1000), default="")
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # Relationships
    user = relationship("User", back_populates="movies")
    email_schedules = relationship(
        "EmailSchedule",
        back_populates="movie",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def image_state(self) -> ImageState:
        return parse_image_state(self.cover_image)

    @property
    def is_pending(self) -> bool:
        return isinstance(self.image_state, PendingImage)
