import logging
import smtplib
import ssl
from email.message import EmailMessage
from html import escape
from typing import Any, Sequence

from starlette.concurrency import run_in_threadpool

from ..core.config import Settings
from ..core.errors import NotificationError
from ..core.models import Submission

logger = logging.getLogger(__name__)

SUBJECT = "New Form Submission"


def _text(value: Any) -> str:
    return "" if value is None else escape(str(value))


def render_notification_html(submission: Submission, image_urls: Sequence[str]) -> str:
    """HTML summary for staff; the images block is left out when nothing uploaded."""
    parts = [
        "<h2>New Form Submission</h2>",
        f"<p><b>Name:</b> {_text(submission.full_name)}</p>",
        f"<p><b>Email:</b> {_text(submission.email)}</p>",
        f"<p><b>Phone:</b> {_text(submission.phone)}</p>",
    ]
    if submission.category is not None:
        parts.append(f"<p><b>Category:</b> {_text(submission.category)}</p>")
    parts.append(f"<p><b>Message:</b> {_text(submission.additional_info)}</p>")
    if image_urls:
        parts.append("<p><b>Images:</b></p>")
        parts.extend(f'<img src="{escape(url, quote=True)}" width="200"/>' for url in image_urls)
    return "\n".join(parts)


def render_notification_text(submission: Submission, image_urls: Sequence[str]) -> str:
    lines = [
        "New Form Submission",
        f"Name: {submission.full_name}",
        f"Email: {submission.email or ''}",
        f"Phone: {submission.phone or ''}",
        f"Message: {submission.additional_info or ''}",
    ]
    lines.extend(f"Image: {url}" for url in image_urls)
    return "\n".join(lines)


class SmtpNotifier:
    """Sends the staff notification through an authenticated SMTP relay."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def build_message(self, submission: Submission, image_urls: Sequence[str]) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = SUBJECT
        msg["From"] = self._settings.email_user
        msg["To"] = self._settings.notification_email
        if submission.email:
            msg["Reply-To"] = str(submission.email)
        msg.set_content(render_notification_text(submission, image_urls))
        msg.add_alternative(render_notification_html(submission, image_urls), subtype="html")
        return msg

    def _connect(self) -> smtplib.SMTP:
        s = self._settings
        context = ssl.create_default_context()
        if s.smtp_starttls:
            smtp = smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout)
            smtp.starttls(context=context)
            return smtp
        return smtplib.SMTP_SSL(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout, context=context)

    def _send(self, msg: EmailMessage) -> None:
        try:
            with self._connect() as smtp:
                smtp.login(self._settings.email_user, self._settings.email_pass)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"email delivery failed: {e}") from e

    async def send_notification(self, submission: Submission, image_urls: Sequence[str]) -> None:
        try:
            msg = self.build_message(submission, image_urls)
        except ValueError as e:
            raise NotificationError(f"email could not be built: {e}") from e
        await run_in_threadpool(self._send, msg)
        logger.info("Notification sent to=%s images=%d", self._settings.notification_email, len(image_urls))
