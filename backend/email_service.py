# email_service.py — Notification emails over SMTP
"""
Disabled (every send is a no-op) unless SMTP_HOST, SMTP_USER and SMTP_PASS
are all set. smtplib is blocking, so sends run in a worker thread.
"""
import os
import ssl
import html
import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from models import User, NotificationType

logger = logging.getLogger("taskhub.email")

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")


@dataclass
class SMTPSettings:
    host: Optional[str]
    port: int
    user: Optional[str]
    password: Optional[str]
    sender: Optional[str] = None

    @classmethod
    def from_env(cls) -> "SMTPSettings":
        return cls(
            host=os.getenv("SMTP_HOST"),
            port=int(os.getenv("SMTP_PORT", "587")),
            user=os.getenv("SMTP_USER"),
            password=os.getenv("SMTP_PASS"),
            sender=os.getenv("SMTP_FROM"),
        )

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user and self.password)


# type -> (subject, heading, page, link label)
TEMPLATES = {
    NotificationType.TASK_ASSIGNED: ("You have been assigned a task", "New Task Assignment", "tasks", "View Task"),
    NotificationType.TASK_STATUS_CHANGED: ("Task status updated", "Task Status Changed", "tasks", "View Task"),
    NotificationType.COMMENT_ADDED: ("New comment on your task", "New Comment", "tasks", "View Task"),
    NotificationType.COMMENT_MENTIONED: ("You were mentioned in a comment", "You Were Mentioned", "tasks", "View Task"),
    NotificationType.GOAL_ASSIGNED: ("A new goal was set for you", "New Monthly Goal", "goals", "View Goals"),
    NotificationType.FEEDBACK_RECEIVED: ("You received feedback", "New Feedback", "feedback", "View Feedback"),
}


def render_email(type: NotificationType, message: str, related_id: Optional[str]):
    """Returns (subject, text_body, html_body) or None for unknown types."""
    if type not in TEMPLATES:
        return None
    subject, heading, page, label = TEMPLATES[type]
    url = f"{FRONTEND_URL}/{page}"
    # only tasks have a detail page
    if related_id and page == "tasks":
        url = f"{url}/{related_id}"
    text_body = f"{heading}\n\n{message}\n\n{label}: {url}\n"
    html_body = (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\"></head>"
        "<body style=\"font-family:'Segoe UI',Tahoma,sans-serif;background:#f0f2f5;padding:32px 16px;\">"
        "<div style=\"max-width:560px;margin:auto;background:#fff;border-radius:12px;padding:32px 28px;\">"
        f"<h2 style=\"margin:0 0 12px;color:#1a1a2e;\">{html.escape(heading)}</h2>"
        f"<p style=\"color:#555;line-height:1.6;\">{html.escape(message)}</p>"
        f"<a href=\"{html.escape(url)}\" style=\"display:inline-block;background:#4a90d9;color:#fff;"
        "padding:12px 28px;border-radius:8px;text-decoration:none;\">"
        f"{html.escape(label)}</a>"
        "<p style=\"color:#aaa;font-size:12px;margin-top:24px;\">"
        "You received this because of your notification settings in TaskHub.</p>"
        "</div></body></html>"
    )
    return subject, text_body, html_body


class EmailDispatcher:
    def __init__(self, session_factory: async_sessionmaker, settings: Optional[SMTPSettings] = None):
        self.session_factory = session_factory
        self.settings = settings or SMTPSettings.from_env()

    @property
    def enabled(self) -> bool:
        return self.settings.configured

    async def send_notification_email(self, recipient_id: str, type: NotificationType,
                                      message: str, related_id: Optional[str] = None) -> bool:
        """Returns True when a message was handed to the SMTP server."""
        if not self.enabled:
            return False

        rendered = render_email(type, message, related_id)
        if rendered is None:
            return False

        async with self.session_factory() as session:
            result = await session.execute(
                select(User.email).where(User.id == recipient_id, User.is_deleted.is_(False))
            )
            email = result.scalar_one_or_none()
        if not email:
            return False

        subject, text_body, html_body = rendered
        await asyncio.to_thread(self._send_sync, email, subject, text_body, html_body)
        logger.info(f"Email sent: type={type.value} recipient={recipient_id[:8]}")
        return True

    def _send_sync(self, to: str, subject: str, text_body: str, html_body: str) -> None:
        s = self.settings
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"TaskHub <{s.sender or s.user}>"
        msg["To"] = to
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        context = ssl.create_default_context()
        if s.port == 465:
            server = smtplib.SMTP_SSL(s.host, s.port, context=context, timeout=10)
        else:
            server = smtplib.SMTP(s.host, s.port, timeout=10)
            server.starttls(context=context)
        try:
            server.login(s.user, s.password)
            server.sendmail(s.sender or s.user, [to], msg.as_string())
        finally:
            server.quit()
