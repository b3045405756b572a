"""
Movie routes: two-phase creation, updates, removal and listing.
"""
import re
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from sqlalchemy.orm import Session

from ..auth import get_required_user
from ..config import get_settings
from ..database import get_db
from ..logging_config import api_logger
from ..models.movie import Movie
from ..models.user import User
from ..responses import ApiException, bad_request, paginated
from ..schemas.movie import MovieCreate, MovieUpdate
from ..services.best_effort import best_effort
from ..services.movies import DEFAULT_PER_PAGE, CoverImageFile, MovieFilters, MovieService
from ..services.storage import StorageError, StorageService, get_storage

settings = get_settings()

router = APIRouter(prefix="/api/movies", tags=["movies"])

IMAGE_CONTENT_TYPE = re.compile(r"^image/(jpeg|png|jpg|webp|gif)$")


def movie_to_dict(movie: Movie) -> dict:
    """Convert a Movie model to a dictionary response."""
    return {
        "id": movie.id,
        "user_id": movie.user_id,
        "title": movie.title,
        "original_title": movie.original_title,
        "cover_image": movie.cover_image,
        "pending_image": movie.is_pending,
        "popularity": movie.popularity,
        "vote_count": movie.vote_count,
        "score": movie.score,
        "tagline": movie.tagline,
        "synopsis": movie.synopsis,
        "genres": movie.genres or [],
        "release_date": movie.release_date.isoformat(),
        "duration": movie.duration,
        "status": movie.status,
        "language": movie.language,
        "budget": movie.budget,
        "revenue": movie.revenue,
        "profit": movie.profit,
        "trailer_url": movie.trailer_url,
        "created_at": movie.created_at.isoformat() if movie.created_at else None,
        "updated_at": movie.updated_at.isoformat() if movie.updated_at else None,
    }


def get_movie_service(
    db: Session = Depends(get_db),
    storage: Optional[StorageService] = Depends(get_storage),
) -> MovieService:
    return MovieService(db, storage=storage)


def read_cover_image(cover_image: Optional[UploadFile] = File(None)) -> CoverImageFile:
    """Validate the multipart ``cover_image`` field: an image of at most the configured size."""
    if cover_image is None:
        bad_request(
            "Cover image file is required. Please upload an image file using multipart/form-data.",
            "MISSING_FILE",
        )

    content_type = (cover_image.content_type or "").lower()
    if not IMAGE_CONTENT_TYPE.match(content_type):
        bad_request(
            "Only image files are allowed (JPEG, PNG, JPG, WEBP, GIF)",
            "INVALID_FILE",
            {"content_type": content_type},
        )

    limit = settings.max_cover_image_bytes
    content = cover_image.file.read(limit + 1)
    if len(content) > limit:
        bad_request(
            f"Cover image must not exceed {limit // (1024 * 1024)} MB",
            "FILE_TOO_LARGE",
            {"max_bytes": limit},
        )
    if not content:
        bad_request("Cover image file is empty", "INVALID_FILE")

    return CoverImageFile(
        filename=cover_image.filename or "cover",
        content=content,
        content_type=content_type,
    )


def movie_filters(
    duration_min: Optional[int] = Query(None, ge=1),
    duration_max: Optional[int] = Query(None, ge=1),
    release_date_min: Optional[datetime] = None,
    release_date_max: Optional[datetime] = None,
    search: Optional[str] = Query(None, max_length=200),
    score_min: Optional[float] = Query(None, ge=0, le=100),
    score_max: Optional[float] = Query(None, ge=0, le=100),
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1),
) -> MovieFilters:
    return MovieFilters(
        duration_min=duration_min,
        duration_max=duration_max,
        release_date_min=release_date_min,
        release_date_max=release_date_max,
        search=search,
        score_min=score_min,
        score_max=score_max,
        page=page,
        per_page=per_page,
    )


@router.post("", status_code=status.HTTP_201_CREATED)
def create_movie(
    movie_data: MovieCreate,
    service: MovieService = Depends(get_movie_service),
    current_user: User = Depends(get_required_user),
):
    """Create the movie data (step 1). The cover image is uploaded next."""
    api_logger.info("Creating movie", title=movie_data.title, user_id=current_user.id)
    movie = service.create_initial(current_user.id, movie_data.model_dump())

    return {
        **movie_to_dict(movie),
        "message": "Movie created successfully. Upload a cover image.",
        "upload_endpoint": f"/api/movies/{movie.id}/cover-image",
    }


@router.post("/{movie_id}/cover-image")
def upload_cover_image(
    movie_id: int,
    current_user: User = Depends(get_required_user),
    image: CoverImageFile = Depends(read_cover_image),
    service: MovieService = Depends(get_movie_service),
):
    """
    Upload the cover image for an existing movie (step 2).

    If the upload itself fails while the movie is still pending, the movie is
    removed so no half-created record is left behind.
    """
    try:
        movie = service.upload_cover_image(movie_id, image, current_user.id)
    except ApiException as e:
        if e.status_code < 500:
            raise
        failure = e
    except StorageError as e:
        failure = e
    else:
        return {**movie_to_dict(movie), "message": "Cover image updated successfully."}

    api_logger.error("Error uploading image", error=failure, movie_id=movie_id)
    service.db.rollback()
    movie = service.db.get(Movie, movie_id)
    if movie is not None and movie.is_pending:
        with best_effort("Removing movie after upload failure", movie_id=movie_id):
            service.remove(movie_id)
        bad_request(
            "Error uploading image. The movie was removed to maintain data consistency.",
            "UPLOAD_FAILED",
        )
    bad_request("Error uploading image. The previous cover image was kept.", "UPLOAD_FAILED")


@router.get("")
def list_movies(
    filters: MovieFilters = Depends(movie_filters),
    service: MovieService = Depends(get_movie_service),
):
    """List complete movies, newest release first."""
    movies = service.find_all(filters)
    total = service.count(filters)
    return paginated([movie_to_dict(m) for m in movies], total, filters.page, filters.take)


@router.get("/{movie_id}")
def get_movie(
    movie_id: int,
    service: MovieService = Depends(get_movie_service),
    current_user: User = Depends(get_required_user),
):
    """Get a single complete movie."""
    return movie_to_dict(service.find_one(movie_id))


@router.patch("/{movie_id}")
def update_movie(
    movie_id: int,
    movie_update: MovieUpdate,
    service: MovieService = Depends(get_movie_service),
    current_user: User = Depends(get_required_user),
):
    """Update movie data only (the image has its own endpoint)."""
    update_data = movie_update.model_dump(exclude_unset=True)
    if not update_data:
        bad_request("At least one field to update is required.")

    api_logger.info("Updating movie", movie_id=movie_id, fields=sorted(update_data))
    movie = service.update_movie_data(movie_id, update_data, current_user.id)
    return movie_to_dict(movie)


@router.patch("/{movie_id}/cover-image")
def update_cover_image(
    movie_id: int,
    current_user: User = Depends(get_required_user),
    image: CoverImageFile = Depends(read_cover_image),
    service: MovieService = Depends(get_movie_service),
):
    """Replace the cover image of a complete movie."""
    try:
        movie = service.update_cover_image(movie_id, image, current_user.id)
    except StorageError as e:
        api_logger.error("Error updating image", error=e, movie_id=movie_id)
        bad_request("Failed to update cover image", "UPLOAD_FAILED")
    return {**movie_to_dict(movie), "message": "Cover image updated successfully."}


@router.delete("/{movie_id}")
def delete_movie(
    movie_id: int,
    service: MovieService = Depends(get_movie_service),
    current_user: User = Depends(get_required_user),
):
    """Delete a movie (must belong to current user)."""
    movie = service.remove(movie_id, current_user.id)
    return {**movie_to_dict(movie), "message": "Movie deleted"}
