"""
Mail transport and reminder templates.
"""
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional, Tuple

from jinja2 import Environment, FileSystemLoader, select_autoescape

from ..config import get_settings
from ..logging_config import get_logger
from .cover_image import CompleteImage

logger = get_logger("mail")

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

_templates = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)


class MailError(Exception):
    """Raised when an email cannot be delivered."""


class MailTransport:
    """Send one HTML email to one recipient."""

    def send(self, to_address: str, subject: str, html_body: str) -> Dict:
        raise NotImplementedError


class SmtpMailTransport(MailTransport):
    """Deliver through an SMTP relay."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        sender: str = "noreply@movietrack.app",
        timeout: float = 30,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.timeout = timeout

    def build_message(self, to_address: str, subject: str, html_body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to_address
        message["Subject"] = subject
        message["Message-ID"] = make_msgid(domain="movietrack.app")
        message.set_content("This email requires an HTML-capable client.")
        message.add_alternative(html_body, subtype="html")
        return message

    def send(self, to_address: str, subject: str, html_body: str) -> Dict:
        message = self.build_message(to_address, subject, html_body)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                refused = smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise MailError(f"Failed to send email to {to_address}: {e}") from e

        logger.info("Email sent", to=to_address, subject=subject)
        return {"message_id": message["Message-ID"], "refused": refused}


class LoggingMailTransport(MailTransport):
    """Development transport: logs emails instead of sending them."""

    def send(self, to_address: str, subject: str, html_body: str) -> Dict:
        logger.info("Email not sent (no SMTP host configured)", to=to_address, subject=subject)
        return {"message_id": None, "logged": True}


def render_release_reminder(movie, user) -> Tuple[str, str]:
    """Render the subject and HTML body of a release reminder."""
    state = movie.image_state
    cover_url = state.url if isinstance(state, CompleteImage) else None
    html = _templates.get_template("release_reminder.html").render(
        movie=movie,
        user=user,
        cover_url=cover_url,
    )
    return f"Reminder: {movie.title} premieres today!", html


@lru_cache()
def get_mailer() -> MailTransport:
    """Build the mail transport from settings (cached)."""
    settings = get_settings()
    if not settings.smtp_host:
        return LoggingMailTransport()
    return SmtpMailTransport(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        sender=settings.mail_from,
    )
