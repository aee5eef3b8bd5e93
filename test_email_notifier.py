"""
Tests for email notifications and delivery backends
"""

import base64
import email
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from config import Config
from email_notifier import (
    EmailNotifier,
    GmailEmailBackend,
    SmtpEmailBackend,
    build_backend,
    build_task_email,
    format_due_date,
)

TASK = {
    'id': 7,
    'title': "Ship release",
    'description': "Tag and publish",
    'status': 'IN_PROGRESS',
    'priority': 'HIGH',
    'category': "Work",
    'due_date': "2025-11-21T15:00:00.000000+00:00",
}


class FakeBackend:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send(self, to, subject, text, html=None):
        if self.fail:
            raise OSError("connection refused")
        self.sent.append({'to': to, 'subject': subject, 'text': text, 'html': html})


# ==================== MESSAGE CONTENT ====================

def test_format_due_date():
    due = datetime(2025, 11, 21, 15, 0, tzinfo=timezone.utc)
    assert format_due_date(due) == "Friday, November 21, 2025 at 3:00 PM UTC"
    assert format_due_date(datetime(2025, 1, 1, 0, 5, tzinfo=timezone.utc)) == \
        "Wednesday, January 1, 2025 at 12:05 AM UTC"
    assert format_due_date(None) == "No due date"


def test_created_email():
    subject, body = build_task_email('created', TASK)
    assert subject == "New task created: Ship release"
    assert body.splitlines() == [
        "Title: Ship release",
        "Description: Tag and publish",
        "Status: IN PROGRESS",
        "Priority: HIGH",
        "Category: Work",
        "Due: Friday, November 21, 2025 at 3:00 PM UTC",
    ]


def test_updated_and_deleted_trailers():
    subject, body = build_task_email('updated', TASK)
    assert subject == "Task updated: Ship release"
    assert body.endswith("--- Task has been updated with the latest information ---")

    subject, body = build_task_email('deleted', TASK)
    assert subject == "Task deleted: Ship release"
    assert body.endswith("--- Task has been deleted from Smart To-Do ---")


def test_email_skips_missing_fields():
    task = {'id': 1, 'title': "Bare", 'status': 'PENDING', 'priority': None,
            'description': None, 'category': None, 'due_date': None}
    _, body = build_task_email('created', task)
    assert body.splitlines() == ["Title: Bare", "Status: PENDING", "Priority: MEDIUM", "Due: No due date"]


def test_unknown_event_rejected():
    with pytest.raises(ValueError):
        build_task_email('archived', TASK)


# ==================== NOTIFIER ====================

def test_send_task_email_uses_backend():
    backend = FakeBackend()
    assert EmailNotifier(backend).send_task_email('created', TASK, "owner@example.com") is True
    assert backend.sent[0]['to'] == "owner@example.com"
    assert backend.sent[0]['subject'] == "New task created: Ship release"


def test_unconfigured_notifier_skips():
    notifier = EmailNotifier()
    assert notifier.send_task_email('created', TASK, "owner@example.com") is False
    assert notifier.send_magic_link("owner@example.com", "http://x/verify") is False


def test_backend_failure_is_swallowed_for_task_email():
    notifier = EmailNotifier(FakeBackend(fail=True))
    assert notifier.send_task_email('updated', TASK, "owner@example.com") is False


def test_backend_failure_propagates_for_magic_link():
    notifier = EmailNotifier(FakeBackend(fail=True))
    with pytest.raises(OSError):
        notifier.send_magic_link("owner@example.com", "http://x/verify")


def test_magic_link_email_contains_url():
    backend = FakeBackend()
    EmailNotifier(backend).send_magic_link("owner@example.com", "http://app/api/auth/verify?token=abc")
    sent = backend.sent[0]
    assert sent['subject'] == "Sign in to Smart To-Do"
    assert "http://app/api/auth/verify?token=abc" in sent['text']
    assert 'href="http://app/api/auth/verify?token=abc"' in sent['html']


def test_magic_link_html_escapes_query_separator():
    backend = FakeBackend()
    url = "http://app/api/auth/verify?token=abc&email=owner%40example.com"
    EmailNotifier(backend).send_magic_link("owner@example.com", url)
    sent = backend.sent[0]
    assert url in sent['text']
    assert 'href="http://app/api/auth/verify?token=abc&amp;email=owner%40example.com"' in sent['html']
    assert "token=abc&email" not in sent['html']


# ==================== BACKENDS ====================

def test_build_backend_selection():
    assert build_backend(Config(email_backend="smtp")) is None

    smtp = build_backend(Config(email_backend="smtp", email_from="todo@example.com",
                                sendgrid_api_key="SG.key"))
    assert isinstance(smtp, SmtpEmailBackend)
    assert (smtp.host, smtp.port, smtp.user, smtp.password) == ("smtp.sendgrid.net", 587, "apikey", "SG.key")

    assert build_backend(Config(email_backend="gmail", email_from="todo@example.com")) is None
    gmail = build_backend(Config(email_backend="gmail", email_from="todo@example.com",
                                 gmail_client_id="id", gmail_client_secret="secret",
                                 gmail_refresh_token="refresh"))
    assert isinstance(gmail, GmailEmailBackend)

    assert build_backend(Config(email_backend="pigeon")) is None


@patch("email_notifier.smtplib.SMTP")
def test_smtp_backend_sends_with_starttls(mock_smtp):
    server = mock_smtp.return_value.__enter__.return_value
    backend = SmtpEmailBackend("smtp.sendgrid.net", 587, "apikey", "SG.key", "todo@example.com")

    backend.send("owner@example.com", "Hello", "plain body", "<p>html body</p>")

    mock_smtp.assert_called_once_with("smtp.sendgrid.net", 587, timeout=30)
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("apikey", "SG.key")
    message = server.send_message.call_args[0][0]
    assert message["To"] == "owner@example.com"
    assert message["From"] == "todo@example.com"
    assert message.is_multipart()


def test_gmail_backend_sends_raw_message():
    backend = GmailEmailBackend("id", "secret", "refresh", "todo@example.com")
    service = MagicMock()
    backend._service = service

    backend.send("owner@example.com", "Task updated: Ship release", "body text")

    send = service.users.return_value.messages.return_value.send
    kwargs = send.call_args.kwargs
    assert kwargs['userId'] == "me"
    message = email.message_from_bytes(base64.urlsafe_b64decode(kwargs['body']['raw']))
    assert message["Subject"] == "Task updated: Ship release"
    assert message["To"] == "owner@example.com"
    send.return_value.execute.assert_called_once()
