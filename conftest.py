"""
Shared fixtures: temporary SQLite databases and in-memory stand-ins
for the email and Google Calendar services.
"""

import pytest

from database import Database
from flask_api import create_app
from task_manager import TaskManager
from user_manager import UserManager


class RecordingNotifier:
    """Collects notifications instead of sending mail."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.task_emails = []
        self.magic_links = []

    def send_task_email(self, event, task, recipient):
        if self.fail:
            raise RuntimeError("smtp down")
        self.task_emails.append((event, dict(task), recipient))
        return True

    def send_magic_link(self, email, url):
        if self.fail:
            raise RuntimeError("smtp down")
        self.magic_links.append((email, url))
        return True

    def events(self):
        return [event for event, _, _ in self.task_emails]


class RecordingCalendar:
    """Hands out sequential event IDs and records every call."""

    def __init__(self, fail: bool = False, configured: bool = True, refresh_token: str = "refresh-abc"):
        self.fail = fail
        self.configured = configured
        self.refresh_token = refresh_token
        self.calls = []
        self._next_id = 0

    @property
    def is_configured(self):
        return self.configured

    def create_event(self, task, user=None):
        self.calls.append(('create', task['id'], None))
        if self.fail:
            raise RuntimeError("calendar down")
        self._next_id += 1
        return f"evt-{self._next_id}"

    def update_event(self, event_id, task, user=None):
        self.calls.append(('update', task['id'], event_id))
        if self.fail:
            raise RuntimeError("calendar down")
        return event_id

    def delete_event(self, event_id, user=None):
        self.calls.append(('delete', None, event_id))
        if self.fail:
            raise RuntimeError("calendar down")
        return True

    def authorization_url(self, redirect_uri, state):
        return f"https://accounts.example.test/auth?state={state}"

    def exchange_code(self, code, redirect_uri, state=None):
        self.calls.append(('exchange', code, state))
        return self.refresh_token

    def actions(self):
        return [action for action, _, _ in self.calls]


@pytest.fixture
def db(tmp_path):
    return Database(str(tmp_path / "test_tasks.db"))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def calendar():
    return RecordingCalendar()


@pytest.fixture
def user(db):
    user_id = db.create_user("owner@example.com")
    return db.get_user(user_id)


@pytest.fixture
def other_user(db):
    user_id = db.create_user("someone.else@example.com")
    return db.get_user(user_id)


@pytest.fixture
def task_manager(db, notifier, calendar):
    return TaskManager(db, notifier=notifier, calendar=calendar)


@pytest.fixture
def user_manager(db):
    return UserManager(db)


@pytest.fixture
def app(tmp_path, notifier, calendar):
    overrides = {
        'database_path': str(tmp_path / "api_tasks.db"),
        'secret_key': "test-secret",
        'app_url': "http://testserver",
        'app_env': "development",
    }
    return create_app(overrides, notifier=notifier, calendar=calendar)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions['smart_todo']


@pytest.fixture
def login(client, services):
    """Sign a user in by writing the session directly; returns the user record."""
    def _login(email="owner@example.com"):
        user = services['users'].get_or_create_user(email)
        with client.session_transaction() as sess:
            sess['user_id'] = user['id']
            sess['email'] = user['email']
        return user
    return _login
