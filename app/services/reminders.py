"""
Release Reminder Scheduler

Keeps at most one unsent reminder per (movie, user) pair and delivers the
ones that have come due. Uniqueness is not backed by a database constraint:
scheduling is find-then-branch, so every writer of unsent schedules must go
through this class.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

from ..clock import Clock, as_naive_utc, utcnow
from ..logging_config import get_logger
from ..models.email_schedule import EmailSchedule
from .mailer import MailTransport, render_release_reminder

logger = get_logger("reminders")


@dataclass
class DeliveryReport:
    """Outcome of one delivery sweep"""
    sent: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.sent) + len(self.failed)


class ReleaseReminderScheduler:
    """Schedule, cancel and deliver movie release reminders."""

    def __init__(self, db: Session, mailer: Optional[MailTransport] = None, clock: Clock = utcnow):
        self.db = db
        self.mailer = mailer
        self.clock = clock

    def find_unsent(self, movie_id: int, user_id: int) -> Optional[EmailSchedule]:
        return self.db.query(EmailSchedule).filter(
            EmailSchedule.movie_id == movie_id,
            EmailSchedule.user_id == user_id,
            EmailSchedule.sent.is_(False),
        ).order_by(EmailSchedule.id).first()

    def schedule_movie_release_email(self, movie_id: int, user_id: int, release_date: datetime) -> EmailSchedule:
        """Move the pair's unsent reminder to ``release_date``, or create one."""
        release_date = as_naive_utc(release_date)
        try:
            schedule = self.find_unsent(movie_id, user_id)
            if schedule:
                schedule.scheduled_for = release_date
            else:
                schedule = EmailSchedule(
                    movie_id=movie_id,
                    user_id=user_id,
                    scheduled_for=release_date,
                    sent=False,
                )
                self.db.add(schedule)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error("Failed to schedule release email", error=e, movie_id=movie_id, user_id=user_id)
            raise

        self.db.refresh(schedule)
        logger.info(
            "Scheduled release email",
            schedule_id=schedule.id,
            movie_id=movie_id,
            user_id=user_id,
            scheduled_for=release_date.isoformat(),
        )
        return schedule

    def cancel_movie_release_email(self, movie_id: int, commit: bool = True) -> int:
        """
        Delete every unsent reminder for the movie. Returns the number removed.

        With ``commit=False`` the delete joins the caller's transaction.
        """
        try:
            deleted = self.db.query(EmailSchedule).filter(
                EmailSchedule.movie_id == movie_id,
                EmailSchedule.sent.is_(False),
            ).delete(synchronize_session="fetch")
            if commit:
                self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error("Failed to cancel release email", error=e, movie_id=movie_id)
            raise

        if deleted:
            logger.info("Cancelled release email", movie_id=movie_id, count=deleted)
        return deleted

    def due_schedules(self, now: Optional[datetime] = None) -> List[EmailSchedule]:
        now = now or self.clock()
        return self.db.query(EmailSchedule).options(
            joinedload(EmailSchedule.movie),
            joinedload(EmailSchedule.user),
        ).filter(
            EmailSchedule.scheduled_for <= now,
            EmailSchedule.sent.is_(False),
        ).order_by(EmailSchedule.scheduled_for, EmailSchedule.id).all()

    def list_for_user(self, user_id: int) -> List[EmailSchedule]:
        return self.db.query(EmailSchedule).filter(
            EmailSchedule.user_id == user_id,
        ).order_by(EmailSchedule.scheduled_for.desc(), EmailSchedule.id).all()

    def send_due_reminders(self) -> DeliveryReport:
        """
        Send every due, unsent reminder and mark it sent.

        Each schedule is committed on its own. A failing schedule is rolled
        back and left unsent for the next sweep; the rest of the batch still
        goes out.
        """
        if self.mailer is None:
            raise RuntimeError("ReleaseReminderScheduler needs a mailer to deliver reminders")

        report = DeliveryReport()
        schedules = self.due_schedules()
        if not schedules:
            return report

        logger.info(f"Found {len(schedules)} email(s) to send")

        # Ids up front: a rollback expires the loaded objects
        for schedule_id in [s.id for s in schedules]:
            schedule = self.db.get(EmailSchedule, schedule_id)
            if schedule is None or schedule.sent:
                continue
            try:
                subject, html = render_release_reminder(schedule.movie, schedule.user)
                self.mailer.send(schedule.user.email, subject, html)
                schedule.sent = True
                self.db.commit()
                report.sent.append(schedule_id)
                logger.info("Release email sent", schedule_id=schedule_id, movie_id=schedule.movie_id)
            except Exception as e:
                self.db.rollback()
                report.failed.append(schedule_id)
                logger.error("Failed to send release email", error=e, schedule_id=schedule_id)

        if report.failed:
            logger.warning(
                f"Delivered {len(report.sent)} release email(s), {len(report.failed)} failed",
                failed=report.failed,
            )
        return report
