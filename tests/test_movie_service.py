"""
Tests for the movie lifecycle service.
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from app.models.email_schedule import EmailSchedule
from app.models.movie import Movie
from app.responses import ApiException
from app.services.cover_image import CompleteImage, PendingImage
from app.services.movies import CoverImageFile, MovieFilters, MovieService
from app.services.storage import StorageError
from conftest import make_movie_data

MAX_AGE = timedelta(minutes=30)


def cover(name="cover.png"):
    return CoverImageFile(filename=name, content=b"\x89PNG", content_type="image/png")


class TestCreateInitial:
    def test_creates_pending_movie(self, movie_service, test_user, clock):
        movie = movie_service.create_initial(test_user.id, make_movie_data())

        assert movie.id is not None
        assert movie.is_pending
        assert movie.image_state == PendingImage(created_at=clock())

    def test_future_release_creates_one_schedule(self, movie_service, db, test_user, clock):
        release = clock() + timedelta(days=7)
        movie = movie_service.create_initial(test_user.id, make_movie_data(release_date=release))

        schedules = db.query(EmailSchedule).all()
        assert len(schedules) == 1
        assert schedules[0].movie_id == movie.id
        assert schedules[0].scheduled_for == release
        assert schedules[0].sent is False

    def test_past_release_creates_no_schedule(self, movie_service, db, test_user):
        movie_service.create_initial(test_user.id, make_movie_data())
        assert db.query(EmailSchedule).count() == 0

    def test_duplicate_title(self, movie_service, test_user):
        movie_service.create_initial(test_user.id, make_movie_data())
        with pytest.raises(ApiException) as exc_info:
            movie_service.create_initial(test_user.id, make_movie_data())
        assert exc_info.value.status_code == 409


class TestCoverImage:
    def test_upload_completes_pending_movie(self, movie_service, storage, test_user, pending_movie):
        movie = movie_service.upload_cover_image(pending_movie.id, cover(), test_user.id)

        assert isinstance(movie.image_state, CompleteImage)
        assert movie.cover_image in storage.objects
        assert storage.deleted == []

    def test_reupload_deletes_previous_object(self, movie_service, storage, test_user, complete_movie):
        movie = movie_service.upload_cover_image(complete_movie.id, cover("second.png"), test_user.id)

        assert movie.cover_image.endswith("second.png")
        assert storage.deleted == ["https://cdn.test/movie-covers/original.jpg"]

    def test_upload_without_storage(self, db, test_user, pending_movie):
        service = MovieService(db, storage=None)
        with pytest.raises(StorageError):
            service.upload_cover_image(pending_movie.id, cover(), test_user.id)
        assert db.get(Movie, pending_movie.id).is_pending

    def test_failed_commit_deletes_orphaned_upload(self, movie_service, db, storage, test_user, complete_movie, monkeypatch):
        def failing_commit():
            raise OperationalError("UPDATE movies", {}, Exception("database is locked"))

        with monkeypatch.context() as m:
            m.setattr(db, "commit", failing_commit)
            with pytest.raises(ApiException) as exc_info:
                movie_service.upload_cover_image(complete_movie.id, cover(), test_user.id)

        assert exc_info.value.status_code == 500
        assert len(storage.deleted) == 1
        assert storage.deleted[0].endswith("cover.png")
        assert storage.objects == {}
        # The previous image is still referenced and must survive
        assert db.get(Movie, complete_movie.id).cover_image == "https://cdn.test/movie-covers/original.jpg"

    def test_update_cover_of_pending_rejected(self, movie_service, storage, test_user, pending_movie):
        with pytest.raises(ApiException) as exc_info:
            movie_service.update_cover_image(pending_movie.id, cover(), test_user.id)
        assert exc_info.value.status_code == 400
        assert exc_info.value.error_code == "MOVIE_PENDING"
        assert storage.objects == {}

    def test_non_owner_cannot_upload(self, movie_service, other_user, pending_movie):
        with pytest.raises(ApiException) as exc_info:
            movie_service.upload_cover_image(pending_movie.id, cover(), other_user.id)
        assert exc_info.value.status_code == 403


class TestUpdateMovieData:
    def test_pending_movie_rejected(self, movie_service, test_user, pending_movie):
        with pytest.raises(ApiException) as exc_info:
            movie_service.update_movie_data(pending_movie.id, {"title": "New"}, test_user.id)
        assert exc_info.value.error_code == "MOVIE_PENDING"

    def test_ignores_unknown_fields(self, movie_service, test_user, complete_movie):
        movie = movie_service.update_movie_data(
            complete_movie.id,
            {"tagline": "Changed", "cover_image": "https://evil.test/x.jpg", "user_id": 999},
            test_user.id,
        )
        assert movie.tagline == "Changed"
        assert movie.cover_image == "https://cdn.test/movie-covers/original.jpg"
        assert movie.user_id == test_user.id

    def test_null_clears_optional_fields(self, movie_service, test_user, complete_movie):
        movie = movie_service.update_movie_data(
            complete_movie.id,
            {"tagline": None, "genres": None, "title": None},
            test_user.id,
        )
        assert movie.tagline == ""
        assert movie.genres == []
        assert movie.title == "Complete Movie"

    def test_failed_reschedule_keeps_existing_reminder(self, movie_service, db, test_user, complete_movie, clock, monkeypatch):
        first = clock() + timedelta(days=2)
        movie_service.update_movie_data(complete_movie.id, {"release_date": first}, test_user.id)

        def failing_schedule(movie_id, user_id, release_date):
            raise OperationalError("INSERT INTO email_schedules", {}, Exception("database is locked"))

        monkeypatch.setattr(movie_service.reminders, "schedule_movie_release_email", failing_schedule)
        with pytest.raises(ApiException) as exc_info:
            movie_service.update_movie_data(
                complete_movie.id,
                {"release_date": clock() + timedelta(days=20)},
                test_user.id,
            )

        assert exc_info.value.status_code == 500
        schedules = db.query(EmailSchedule).all()
        assert len(schedules) == 1
        assert schedules[0].scheduled_for == first

    def test_release_moved_later_updates_schedule(self, movie_service, db, test_user, complete_movie, clock):
        first = clock() + timedelta(days=2)
        later = clock() + timedelta(days=20)
        movie_service.update_movie_data(complete_movie.id, {"release_date": first}, test_user.id)
        movie_service.update_movie_data(complete_movie.id, {"release_date": later}, test_user.id)

        schedules = db.query(EmailSchedule).all()
        assert len(schedules) == 1
        assert schedules[0].scheduled_for == later

    def test_release_moved_to_past_cancels_schedule(self, movie_service, db, test_user, complete_movie, clock):
        movie_service.update_movie_data(complete_movie.id, {"release_date": clock() + timedelta(days=2)}, test_user.id)
        movie_service.update_movie_data(complete_movie.id, {"release_date": datetime(2001, 1, 1)}, test_user.id)

        assert db.query(EmailSchedule).count() == 0

    def test_sent_schedule_is_kept_on_reschedule(self, movie_service, db, test_user, complete_movie, clock):
        db.add(EmailSchedule(
            movie_id=complete_movie.id,
            user_id=test_user.id,
            scheduled_for=clock() - timedelta(days=1),
            sent=True,
        ))
        db.commit()

        movie_service.update_movie_data(complete_movie.id, {"release_date": clock() + timedelta(days=5)}, test_user.id)

        assert db.query(EmailSchedule).filter(EmailSchedule.sent.is_(True)).count() == 1
        assert db.query(EmailSchedule).filter(EmailSchedule.sent.is_(False)).count() == 1


class TestRemove:
    def test_pending_movie_makes_no_storage_call(self, movie_service, db, storage, pending_movie):
        movie_service.remove(pending_movie.id)

        assert db.get(Movie, pending_movie.id) is None
        assert storage.deleted == []

    def test_complete_movie_deletes_image(self, movie_service, storage, complete_movie):
        movie_service.remove(complete_movie.id)
        assert storage.deleted == ["https://cdn.test/movie-covers/original.jpg"]

    def test_storage_delete_failure_is_not_fatal(self, movie_service, db, storage, complete_movie):
        storage.fail_delete = True
        movie_service.remove(complete_movie.id)
        assert db.get(Movie, complete_movie.id) is None

    def test_removes_schedules(self, movie_service, db, test_user, complete_movie, clock):
        movie_service.update_movie_data(complete_movie.id, {"release_date": clock() + timedelta(days=2)}, test_user.id)
        assert db.query(EmailSchedule).count() == 1

        movie_service.remove(complete_movie.id, test_user.id)
        assert db.query(EmailSchedule).count() == 0

    def test_non_owner_rejected(self, movie_service, db, other_user, complete_movie):
        with pytest.raises(ApiException) as exc_info:
            movie_service.remove(complete_movie.id, other_user.id)
        assert exc_info.value.status_code == 403
        assert db.get(Movie, complete_movie.id) is not None

    def test_missing_movie(self, movie_service):
        with pytest.raises(ApiException) as exc_info:
            movie_service.remove(12345)
        assert exc_info.value.status_code == 404


class TestCleanupExpiredPending:
    def test_young_movie_is_kept(self, movie_service, db, clock, pending_movie):
        clock.advance(minutes=29)
        report = movie_service.cleanup_expired_pending(MAX_AGE)

        assert report.removed == []
        assert report.active == [pending_movie.id]
        assert db.get(Movie, pending_movie.id) is not None

    def test_movie_at_threshold_is_removed(self, movie_service, db, storage, clock, pending_movie):
        clock.advance(minutes=30)
        report = movie_service.cleanup_expired_pending(MAX_AGE)

        assert report.removed == [pending_movie.id]
        assert db.get(Movie, pending_movie.id) is None
        assert storage.deleted == []

    def test_unreadable_sentinel_is_removed(self, movie_service, db, test_user):
        movie = Movie(user_id=test_user.id, cover_image="pending_soon", **make_movie_data(title="Broken"))
        db.add(movie)
        db.commit()

        report = movie_service.cleanup_expired_pending(MAX_AGE)
        assert report.removed == [movie.id]

    def test_complete_movies_are_ignored(self, movie_service, db, clock, complete_movie):
        clock.advance(days=365)
        report = movie_service.cleanup_expired_pending(MAX_AGE)

        assert report.removed == []
        assert report.active == []
        assert db.get(Movie, complete_movie.id) is not None

    def test_one_failure_does_not_stop_the_sweep(self, movie_service, db, test_user, clock, monkeypatch):
        ids = []
        for title in ("First Pending", "Second Pending"):
            movie = Movie(user_id=test_user.id, cover_image="pending_0", **make_movie_data(title=title))
            db.add(movie)
            db.commit()
            ids.append(movie.id)

        original_remove = movie_service.remove_if_pending

        def flaky_remove(movie_id):
            if movie_id == ids[0]:
                raise RuntimeError("connection reset")
            return original_remove(movie_id)

        monkeypatch.setattr(movie_service, "remove_if_pending", flaky_remove)
        report = movie_service.cleanup_expired_pending(MAX_AGE)

        assert report.failed == [ids[0]]
        assert report.removed == [ids[1]]
        assert db.get(Movie, ids[0]) is not None

    def test_movie_completed_after_listing_is_kept(self, movie_service, db, storage, test_user, monkeypatch):
        ids = []
        for title in ("Abandoned", "Finished Late"):
            movie = Movie(user_id=test_user.id, cover_image="pending_0", **make_movie_data(title=title))
            db.add(movie)
            db.commit()
            ids.append(movie.id)
        live_url = "https://cdn.test/movie-covers/live.png"

        original_cancel = movie_service.reminders.cancel_movie_release_email

        def cancel_while_owner_uploads(movie_id, commit=True):
            # The owner's upload commits between the listing and the delete
            if movie_id == ids[1]:
                db.execute(update(Movie).where(Movie.id == ids[1]).values(cover_image=live_url))
                db.commit()
            return original_cancel(movie_id, commit=commit)

        monkeypatch.setattr(movie_service.reminders, "cancel_movie_release_email", cancel_while_owner_uploads)
        report = movie_service.cleanup_expired_pending(MAX_AGE)

        assert report.removed == [ids[0]]
        assert report.skipped == [ids[1]]
        assert storage.deleted == []
        db.expire_all()
        assert db.get(Movie, ids[1]).cover_image == live_url


class TestListing:
    def test_filters_clamp_page_size(self):
        assert MovieFilters(per_page=1).take == 10
        assert MovieFilters(per_page=25).take == 25
        assert MovieFilters(per_page=500).take == 50
        assert MovieFilters(page=3, per_page=20).skip == 40

    def test_find_one_hides_pending(self, movie_service, pending_movie):
        with pytest.raises(ApiException) as exc_info:
            movie_service.find_one(pending_movie.id)
        assert exc_info.value.status_code == 400

    def test_count_excludes_pending(self, movie_service, complete_movie, pending_movie):
        assert movie_service.count(MovieFilters()) == 1
        assert [m.id for m in movie_service.find_all(MovieFilters())] == [complete_movie.id]
