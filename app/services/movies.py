"""
Movie Lifecycle Manager

Movies are created in two phases: the data first, in a pending state, then
the cover image. Pending movies are hidden from reads, reject updates and
are removed by the cleanup sweep once they stay pending too long. This
service is the only writer of cover image transitions and keeps storage
objects and release reminders consistent with movie rows.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import String, cast, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import ObjectDeletedError, StaleDataError

from ..clock import Clock, as_naive_utc, utcnow
from ..logging_config import get_logger
from ..models.movie import Movie
from ..responses import bad_request, conflict, forbidden, not_found, server_error
from .best_effort import best_effort
from .cover_image import CompleteImage, is_pending_column, pending_since
from .reminders import ReleaseReminderScheduler
from .storage import StorageError, StorageService

logger = get_logger("movies")

MIN_PER_PAGE = 10
MAX_PER_PAGE = 50
DEFAULT_PER_PAGE = 10

UPDATABLE_FIELDS = {
    "title",
    "original_title",
    "popularity",
    "vote_count",
    "score",
    "tagline",
    "synopsis",
    "genres",
    "release_date",
    "duration",
    "status",
    "language",
    "budget",
    "revenue",
    "profit",
    "trailer_url",
}

# Optional fields a PATCH may clear with an explicit null
CLEARABLE_FIELDS = {"tagline", "synopsis", "genres", "status", "language", "trailer_url"}


@dataclass
class CoverImageFile:
    """An uploaded image, already validated by the HTTP layer"""
    filename: str
    content: bytes
    content_type: str


@dataclass
class MovieFilters:
    """Listing filters. Unset bounds do not filter."""
    duration_min: Optional[int] = None
    duration_max: Optional[int] = None
    release_date_min: Optional[datetime] = None
    release_date_max: Optional[datetime] = None
    search: Optional[str] = None
    score_min: Optional[float] = None
    score_max: Optional[float] = None
    page: int = 1
    per_page: int = DEFAULT_PER_PAGE

    @property
    def take(self) -> int:
        return min(max(self.per_page or DEFAULT_PER_PAGE, MIN_PER_PAGE), MAX_PER_PAGE)

    @property
    def skip(self) -> int:
        return (max(self.page, 1) - 1) * self.take


@dataclass
class CleanupReport:
    """Outcome of one pending-image cleanup sweep"""
    removed: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    active: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)  # completed after being listed


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _is_unique_violation(error: IntegrityError) -> bool:
    message = str(error.orig).lower()
    return "unique" in message or "duplicate" in message


class MovieService:
    """Create, complete, update, remove and list movies."""

    def __init__(
        self,
        db: Session,
        storage: Optional[StorageService] = None,
        reminders: Optional[ReleaseReminderScheduler] = None,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.storage = storage
        self.clock = clock
        self.reminders = reminders or ReleaseReminderScheduler(db, clock=clock)

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------

    def _storage(self) -> StorageService:
        if self.storage is None:
            raise StorageError("Object storage is not configured")
        return self.storage

    def _persistence_failed(self, error: SQLAlchemyError, action: str, movie_id: Optional[int] = None):
        """Roll back and raise the taxonomy error matching a persistence failure."""
        self.db.rollback()
        if isinstance(error, IntegrityError) and _is_unique_violation(error):
            conflict("Movie title must be unique")
        if isinstance(error, (StaleDataError, ObjectDeletedError)):
            # Row vanished under us, e.g. a concurrent delete
            not_found("Movie", movie_id)
        server_error(f"Failed to {action} movie", cause=error)

    def _discard_image(self, url: str, movie_id: int):
        with best_effort("Deleting cover image", movie_id=movie_id, url=url):
            self._storage().delete(url)

    def get_movie(self, movie_id: int) -> Movie:
        movie = self.db.get(Movie, movie_id)
        if movie is None:
            not_found("Movie", movie_id)
        return movie

    def authorize_owner(self, movie: Movie, user_id: int):
        """Only the owner may modify a movie."""
        if movie.user_id != user_id:
            logger.warning("Ownership check failed", movie_id=movie.id, user_id=user_id)
            forbidden("You do not have permission to modify this movie")

    def _require_complete(self, movie: Movie, message: str):
        if movie.is_pending:
            bad_request(message, "MOVIE_PENDING")

    # ------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------

    def create_initial(self, user_id: int, data: Dict[str, Any]) -> Movie:
        """Phase one: persist the movie data with a pending cover image."""
        fields = {key: value for key, value in data.items() if key in UPDATABLE_FIELDS}
        fields["release_date"] = as_naive_utc(fields["release_date"])
        now = self.clock()

        movie = Movie(
            **fields,
            user_id=user_id,
            cover_image=pending_since(now).to_column(),
        )
        try:
            self.db.add(movie)
            self.db.commit()
            self.db.refresh(movie)
        except SQLAlchemyError as e:
            self._persistence_failed(e, "create")

        logger.info("Created movie with pending image", movie_id=movie.id, user_id=user_id)

        if movie.release_date > now:
            try:
                self.reminders.schedule_movie_release_email(movie.id, user_id, movie.release_date)
            except SQLAlchemyError as e:
                self._persistence_failed(e, "create", movie.id)

        return movie

    def upload_cover_image(self, movie_id: int, file: CoverImageFile, user_id: int) -> Movie:
        """
        Phase two: attach the cover image, completing a pending movie.

        Also accepts a movie that already has an image, in which case the
        old object is deleted once the new URL is stored.
        """
        movie = self.get_movie(movie_id)
        self.authorize_owner(movie, user_id)
        logger.info(
            "Uploading cover image",
            movie_id=movie_id,
            pending=movie.is_pending,
        )
        return self._replace_image(movie, file)

    def _replace_image(self, movie: Movie, file: CoverImageFile) -> Movie:
        movie_id = movie.id
        previous = movie.image_state
        url = self._storage().upload(file.content, file.content_type, file.filename)

        try:
            movie.cover_image = CompleteImage(url).to_column()
            self.db.commit()
            self.db.refresh(movie)
        except SQLAlchemyError as e:
            with best_effort("Deleting orphaned upload", movie_id=movie_id, url=url):
                self._storage().delete(url)
            self._persistence_failed(e, "update", movie_id)

        # Old object goes only after the row points at the new one
        if isinstance(previous, CompleteImage) and previous.url != url:
            self._discard_image(previous.url, movie_id)

        logger.info("Cover image stored", movie_id=movie_id, url=url)
        return movie

    # ------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------

    def update_movie_data(self, movie_id: int, data: Dict[str, Any], user_id: int) -> Movie:
        """Apply a partial update of the movie fields (never the image)."""
        movie = self.get_movie(movie_id)
        self.authorize_owner(movie, user_id)
        self._require_complete(
            movie,
            "Cannot update a movie without a cover image. Upload an image first.",
        )

        fields = {}
        for key, value in data.items():
            if key not in UPDATABLE_FIELDS:
                continue
            if value is None:
                if key not in CLEARABLE_FIELDS:
                    continue
                value = [] if key == "genres" else ""
            fields[key] = value
        if "release_date" in fields:
            fields["release_date"] = as_naive_utc(fields["release_date"])

        try:
            for key, value in fields.items():
                setattr(movie, key, value)
            self.db.commit()
            self.db.refresh(movie)
        except SQLAlchemyError as e:
            self._persistence_failed(e, "update", movie_id)

        if "release_date" in fields:
            self._reschedule_reminder(movie)

        logger.info("Updated movie", movie_id=movie_id, fields=sorted(fields))
        return movie

    def _reschedule_reminder(self, movie: Movie):
        try:
            # Cancel and reschedule commit together
            self.reminders.cancel_movie_release_email(movie.id, commit=False)
            if movie.release_date > self.clock():
                self.reminders.schedule_movie_release_email(movie.id, movie.user_id, movie.release_date)
        except SQLAlchemyError as e:
            self._persistence_failed(e, "update", movie.id)

    def update_cover_image(self, movie_id: int, file: CoverImageFile, user_id: int) -> Movie:
        """Replace the image of a complete movie."""
        movie = self.get_movie(movie_id)
        self.authorize_owner(movie, user_id)
        self._require_complete(
            movie,
            "Cannot replace the image of a pending movie. Use the cover image upload first.",
        )
        return self._replace_image(movie, file)

    # ------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------

    def remove(self, movie_id: int, user_id: Optional[int] = None) -> Movie:
        """
        Delete a movie, its unsent reminders and its stored image.

        ``user_id`` enforces ownership; the cleanup sweep calls without one.
        """
        movie = self.get_movie(movie_id)
        if user_id is not None:
            self.authorize_owner(movie, user_id)
        state = movie.image_state

        try:
            self.reminders.cancel_movie_release_email(movie_id, commit=False)
            self.db.delete(movie)
            self.db.commit()
        except SQLAlchemyError as e:
            self._persistence_failed(e, "delete", movie_id)

        if isinstance(state, CompleteImage):
            self._discard_image(state.url, movie_id)

        logger.info("Removed movie", movie_id=movie_id)
        return movie

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------

    def _filtered_query(self, filters: MovieFilters):
        query = self.db.query(Movie).filter(~is_pending_column(Movie.cover_image))

        if filters.duration_min is not None:
            query = query.filter(Movie.duration >= filters.duration_min)
        if filters.duration_max is not None:
            query = query.filter(Movie.duration <= filters.duration_max)
        if filters.release_date_min is not None:
            query = query.filter(Movie.release_date >= as_naive_utc(filters.release_date_min))
        if filters.release_date_max is not None:
            query = query.filter(Movie.release_date <= as_naive_utc(filters.release_date_max))
        if filters.score_min is not None:
            query = query.filter(Movie.score >= filters.score_min)
        if filters.score_max is not None:
            query = query.filter(Movie.score <= filters.score_max)

        search = (filters.search or "").strip()
        if search:
            pattern = _like_pattern(search)
            query = query.filter(or_(
                Movie.title.ilike(pattern, escape="\\"),
                Movie.original_title.ilike(pattern, escape="\\"),
                Movie.tagline.ilike(pattern, escape="\\"),
                Movie.synopsis.ilike(pattern, escape="\\"),
                cast(Movie.genres, String).ilike(pattern, escape="\\"),
            ))

        return query

    def find_all(self, filters: MovieFilters) -> List[Movie]:
        """Complete movies matching the filters, newest release first."""
        return (
            self._filtered_query(filters)
            .order_by(Movie.release_date.desc(), Movie.id.asc())
            .offset(filters.skip)
            .limit(filters.take)
            .all()
        )

    def count(self, filters: MovieFilters) -> int:
        return self._filtered_query(filters).count()

    def find_one(self, movie_id: int) -> Movie:
        movie = self.get_movie(movie_id)
        self._require_complete(movie, "This movie is still being processed")
        return movie

    # ------------------------------------------------------------
    # Cleanup sweep
    # ------------------------------------------------------------

    def remove_if_pending(self, movie_id: int) -> bool:
        """
        Delete a movie only while its image is still pending.

        The pending check is part of the DELETE itself, so an upload that
        lands after the sweep listed the movie keeps it alive. A pending
        movie has no stored image, so storage is never touched.
        """
        self.reminders.cancel_movie_release_email(movie_id, commit=False)
        deleted = self.db.query(Movie).filter(
            Movie.id == movie_id,
            is_pending_column(Movie.cover_image),
        ).delete(synchronize_session="fetch")

        if not deleted:
            # Undo the reminder cancel along with the no-op delete
            self.db.rollback()
            logger.info("Movie is no longer pending, skipping", movie_id=movie_id)
            return False

        self.db.commit()
        logger.info("Removed expired pending movie", movie_id=movie_id)
        return True

    def pending_movies(self) -> List[Movie]:
        return self.db.query(Movie).filter(
            is_pending_column(Movie.cover_image)
        ).order_by(Movie.id).all()

    def cleanup_expired_pending(self, max_age: timedelta) -> CleanupReport:
        """Remove every movie that has been pending for at least ``max_age``."""
        now = self.clock()
        report = CleanupReport()
        expired = []

        for movie in self.pending_movies():
            age = movie.image_state.age(now)
            # Unreadable sentinels can never age out on their own
            if age is not None and age < max_age:
                report.active.append(movie.id)
            else:
                expired.append(movie.id)

        if not expired:
            logger.debug("No expired pending movies", active=len(report.active))
            return report

        logger.warning(f"Found {len(expired)} expired pending movie(s)", movie_ids=expired)

        for movie_id in expired:
            try:
                if self.remove_if_pending(movie_id):
                    report.removed.append(movie_id)
                else:
                    report.skipped.append(movie_id)
            except Exception as e:
                self.db.rollback()
                report.failed.append(movie_id)
                logger.error("Failed to remove expired movie", error=e, movie_id=movie_id)

        logger.info(
            f"Cleanup complete: removed {len(report.removed)} expired movie(s)"
            + (f", failed to remove {len(report.failed)}" if report.failed else ""),
        )
        return report
