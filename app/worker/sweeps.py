"""
Background Sweeps

Two periodic jobs run beside the API:
- pending cleanup: removes movies whose cover image never arrived
- reminder delivery: emails release reminders that have come due

Each sweep runs on its own daemon thread, owned by the application
lifespan: started at boot and stopped at shutdown.
"""

import threading
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session, sessionmaker

from ..clock import Clock, utcnow
from ..logging_config import timed, worker_logger
from ..services.mailer import MailTransport
from ..services.movies import CleanupReport, MovieService
from ..services.reminders import DeliveryReport, ReleaseReminderScheduler
from ..services.storage import StorageService


class PeriodicSweep:
    """Run a task every ``interval`` seconds until stopped."""

    def __init__(self, name: str, interval: float, task: Callable[[], object]):
        self.name = name
        self.interval = interval
        self.task = task
        self.ticks = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> bool:
        """Run one tick. A failing tick is logged and does not stop the sweep."""
        self.ticks += 1
        try:
            self.task()
            return True
        except Exception as e:
            worker_logger.error(f"Sweep '{self.name}' tick failed", error=e, sweep=self.name)
            return False

    def _loop(self):
        # wait() returns True as soon as stop() is called
        while not self._stop_event.wait(self.interval):
            self.run_once()

    def start_background(self) -> bool:
        """Start the sweep thread (non-blocking for FastAPI)"""
        if self.running:
            return False  # Already running

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name=f"sweep-{self.name}")
        self._thread.start()
        worker_logger.info(f"Sweep '{self.name}' started", sweep=self.name, interval_seconds=self.interval)
        return True

    def stop(self, timeout: float = 10.0) -> bool:
        """Signal the sweep to stop and wait for the current tick to finish."""
        if not self.running:
            return False

        self._stop_event.set()
        self._thread.join(timeout)
        self._thread = None
        worker_logger.info(f"Sweep '{self.name}' stopped", sweep=self.name)
        return True


# ============================================================
# SWEEP TASKS
# ============================================================

@timed(worker_logger)
def cleanup_pending_movies(
    session_factory: sessionmaker,
    storage: Optional[StorageService],
    max_age: timedelta,
    clock: Clock = utcnow,
) -> CleanupReport:
    """One cleanup tick: remove movies pending for at least ``max_age``."""
    db: Session = session_factory()
    try:
        return MovieService(db, storage=storage, clock=clock).cleanup_expired_pending(max_age)
    finally:
        db.close()


@timed(worker_logger)
def deliver_due_reminders(
    session_factory: sessionmaker,
    mailer: MailTransport,
    clock: Clock = utcnow,
) -> DeliveryReport:
    """One delivery tick: send every due release reminder."""
    db: Session = session_factory()
    try:
        return ReleaseReminderScheduler(db, mailer=mailer, clock=clock).send_due_reminders()
    finally:
        db.close()


def build_sweeps(settings, session_factory: sessionmaker, storage, mailer) -> list:
    """Create the application's sweeps from settings."""
    max_age = timedelta(minutes=settings.pending_image_max_age_minutes)
    worker_logger.info(
        "Configuring background sweeps",
        pending_max_age_minutes=settings.pending_image_max_age_minutes,
        cleanup_interval_seconds=settings.pending_cleanup_interval_seconds,
        reminder_interval_seconds=settings.reminder_interval_seconds,
    )
    return [
        PeriodicSweep(
            "pending-cleanup",
            settings.pending_cleanup_interval_seconds,
            lambda: cleanup_pending_movies(session_factory, storage, max_age),
        ),
        PeriodicSweep(
            "reminder-delivery",
            settings.reminder_interval_seconds,
            lambda: deliver_due_reminders(session_factory, mailer),
        ),
    ]
