"""
Email Notifier - Task lifecycle and magic-link emails over SMTP or the Gmail API
"""

import base64
import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from html import escape as escape_html
from typing import Any, Dict, Optional, Tuple

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from config import Config
from database import from_iso

logger = logging.getLogger(__name__)

TASK_EVENTS = ('created', 'updated', 'deleted')

SUBJECTS = {
    'created': "New task created: {title}",
    'updated': "Task updated: {title}",
    'deleted': "Task deleted: {title}",
}

TRAILERS = {
    'updated': "\n--- Task has been updated with the latest information ---",
    'deleted': "\n--- Task has been deleted from Smart To-Do ---",
}

MAGIC_LINK_SUBJECT = "Sign in to Smart To-Do"

MAGIC_LINK_TEXT = """Sign in to Smart To-Do

Click the link below to sign in to your account. This link will expire in 24 hours.

{url}

If you didn't request this email, you can safely ignore it."""

MAGIC_LINK_HTML = """<!DOCTYPE html>
<html>
  <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="color: #667eea;">Smart To-Do</h1>
    <h2>Sign in to your account</h2>
    <p>Click the button below to sign in to Smart To-Do. This link will expire in 24 hours.</p>
    <p style="text-align: center; margin: 30px 0;">
      <a href="{url}" style="background: #667eea; color: white; text-decoration: none; padding: 14px 32px; border-radius: 6px;">Sign in to Smart To-Do</a>
    </p>
    <p style="color: #999; font-size: 14px;">If the button doesn't work, copy and paste this link into your browser:</p>
    <p style="font-size: 12px; word-break: break-all;">{url}</p>
    <p style="color: #999; font-size: 12px;">If you didn't request this email, you can safely ignore it.</p>
  </body>
</html>"""


def format_due_date(due: Optional[datetime]) -> str:
    """Long human date, e.g. 'Friday, November 21, 2025 at 3:00 PM UTC'."""
    if due is None:
        return "No due date"
    hour = due.strftime("%I").lstrip("0") or "12"
    return f"{due:%A, %B} {due.day}, {due.year} at {hour}:{due:%M %p} UTC"


def build_task_email(event: str, task: Dict[str, Any]) -> Tuple[str, str]:
    """Return (subject, plain-text body) for a task lifecycle event."""
    if event not in TASK_EVENTS:
        raise ValueError(f"Unknown task email event: {event}")

    lines = [
        f"Title: {task['title']}",
        f"Description: {task['description']}" if task.get('description') else None,
        f"Status: {task['status'].replace('_', ' ')}" if task.get('status') else None,
        f"Priority: {task.get('priority') or 'MEDIUM'}",
        f"Category: {task['category']}" if task.get('category') else None,
        f"Due: {format_due_date(from_iso(task.get('due_date')))}",
        TRAILERS.get(event),
    ]
    body = "\n".join(line for line in lines if line)
    return SUBJECTS[event].format(title=task['title']), body


# ==================== DELIVERY BACKENDS ====================

class SmtpEmailBackend:
    """STARTTLS SMTP relay (SendGrid by default: user 'apikey', password = API key)."""

    def __init__(self, host: str, port: int, user: Optional[str], password: Optional[str], sender: str):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender

    def send(self, to: str, subject: str, text: str, html: str = None) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        msg.set_content(text)
        if html:
            msg.add_alternative(html, subtype="html")

        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            server.starttls()
            if self.user:
                server.login(self.user, self.password or "")
            server.send_message(msg)


class GmailEmailBackend:
    """Gmail API users.messages.send using an offline refresh token."""

    SCOPES = ['https://www.googleapis.com/auth/gmail.send']
    TOKEN_URI = "https://oauth2.googleapis.com/token"

    def __init__(self, client_id: str, client_secret: str, refresh_token: str, sender: str):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.sender = sender
        self._service = None

    def _get_service(self):
        if self._service is None:
            creds = Credentials(
                token=None,
                refresh_token=self.refresh_token,
                token_uri=self.TOKEN_URI,
                client_id=self.client_id,
                client_secret=self.client_secret,
                scopes=self.SCOPES,
            )
            self._service = build('gmail', 'v1', credentials=creds, cache_discovery=False)
        return self._service

    def send(self, to: str, subject: str, text: str, html: str = None) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        msg.set_content(text)
        if html:
            msg.add_alternative(html, subtype="html")

        raw = base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii")
        self._get_service().users().messages().send(userId="me", body={"raw": raw}).execute()


def build_backend(config: Config):
    """Pick the configured delivery backend; None when email is not configured."""
    backend = (config.email_backend or "").lower()

    if backend == "gmail":
        sender = config.email_from
        if not all([config.gmail_client_id, config.gmail_client_secret,
                    config.gmail_refresh_token, sender]):
            logger.warning("[!] Gmail API is not fully configured. Email delivery disabled.")
            return None
        return GmailEmailBackend(config.gmail_client_id, config.gmail_client_secret,
                                 config.gmail_refresh_token, sender)

    if backend == "smtp":
        if not config.email_from or not config.smtp_secret:
            logger.warning("[!] Missing SMTP/SendGrid configuration. Email delivery disabled.")
            return None
        return SmtpEmailBackend(config.smtp_host, config.smtp_port, config.smtp_user,
                                config.smtp_secret, config.email_from)

    if backend:
        logger.warning("[!] Unknown EMAIL_BACKEND '%s'. Email delivery disabled.", backend)
    return None


# ==================== NOTIFIER ====================

class EmailNotifier:
    """
    Sends task notifications and sign-in links.

    Task notifications are best effort: delivery errors are logged, never raised.
    Magic-link delivery errors propagate so the caller can report them.
    """

    def __init__(self, backend=None, log_magic_links: bool = False):
        self.backend = backend
        self.log_magic_links = log_magic_links

    @classmethod
    def from_config(cls, config: Config) -> "EmailNotifier":
        return cls(build_backend(config), log_magic_links=config.is_development)

    def send_task_email(self, event: str, task: Dict[str, Any], recipient: str) -> bool:
        if not self.backend:
            logger.warning("[!] Email not configured. Skipping '%s' notification for task %s",
                           event, task.get('id'))
            return False
        if not recipient:
            logger.warning("[!] Task %s has no owner email. Skipping notification", task.get('id'))
            return False

        subject, body = build_task_email(event, task)
        try:
            self.backend.send(recipient, subject, body)
        except Exception:
            logger.exception("[!] Failed to send task '%s' email for task %s", event, task.get('id'))
            return False

        logger.info("[OK] Task '%s' email sent to %s", event, recipient)
        return True

    def send_magic_link(self, email: str, url: str) -> bool:
        if not self.backend:
            logger.warning("[!] Email not configured. Magic link email not sent.")
            if self.log_magic_links:
                logger.info("Magic link URL: %s", url)
            return False

        self.backend.send(
            email,
            MAGIC_LINK_SUBJECT,
            MAGIC_LINK_TEXT.format(url=url),
            MAGIC_LINK_HTML.format(url=escape_html(url)),
        )
        logger.info("[OK] Magic link sent to %s", email)
        return True
