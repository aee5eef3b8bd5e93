"""
Tests for request validation
"""

from datetime import datetime, timezone

import pytest

from validations import (
    TaskValidationError,
    normalize_email,
    parse_datetime,
    validate_task_create,
    validate_task_query,
    validate_task_update,
)


def test_create_defaults():
    data = validate_task_create({'title': "Buy milk"})
    assert data == {
        'title': "Buy milk",
        'description': None,
        'status': 'PENDING',
        'priority': 'MEDIUM',
        'category': None,
        'due_date': None,
        'email_notification': True,
        'calendar_sync': True,
    }


def test_create_maps_camel_case_fields():
    data = validate_task_create({
        'title': "Call",
        'dueDate': "2025-11-21T15:00:00Z",
        'emailNotification': False,
        'calendarSync': False,
    })
    assert data['due_date'] == datetime(2025, 11, 21, 15, 0, tzinfo=timezone.utc)
    assert data['email_notification'] is False
    assert data['calendar_sync'] is False


def test_create_requires_title():
    with pytest.raises(TaskValidationError) as excinfo:
        validate_task_create({'priority': 'HIGH'})
    assert str(excinfo.value) == "Task title is required"
    assert excinfo.value.issues[0]['field'] == 'title'


def test_create_collects_every_issue():
    with pytest.raises(TaskValidationError) as excinfo:
        validate_task_create({
            'title': "x" * 141,
            'status': 'DONE',
            'priority': 'urgent',
            'calendarSync': "yes",
            'dueDate': "next tuesday",
        })
    fields = [issue['field'] for issue in excinfo.value.issues]
    assert fields == ['title', 'status', 'priority', 'calendar_sync', 'due_date']


def test_create_rejects_non_object():
    with pytest.raises(TaskValidationError) as excinfo:
        validate_task_create(["title"])
    assert str(excinfo.value) == "Invalid task data"


def test_empty_optional_text_becomes_null():
    data = validate_task_create({'title': "T", 'description': "", 'category': ""})
    assert data['description'] is None
    assert data['category'] is None


def test_length_limits():
    validate_task_create({'title': "t" * 140, 'description': "d" * 2000, 'category': "c" * 120})
    with pytest.raises(TaskValidationError):
        validate_task_create({'title': "t", 'description': "d" * 2001})
    with pytest.raises(TaskValidationError):
        validate_task_create({'title': "t", 'category': "c" * 121})


def test_update_only_returns_present_fields():
    assert validate_task_update({'priority': 'LOW'}) == {'priority': 'LOW'}
    assert validate_task_update({'dueDate': None}) == {'due_date': None}
    assert validate_task_update({}) == {}


def test_update_rejects_empty_title():
    with pytest.raises(TaskValidationError) as excinfo:
        validate_task_update({'title': ""})
    assert str(excinfo.value) == "Task title must be a non-empty string"


def test_parse_datetime_variants():
    assert parse_datetime(None) is None
    assert parse_datetime("") is None
    assert parse_datetime("2025-01-02T03:04:05") == datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert parse_datetime("2025-01-02T05:04:05+02:00") == datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    with pytest.raises(ValueError):
        parse_datetime("soon")
    with pytest.raises(ValueError):
        parse_datetime(12345)


def test_query_parsing():
    query = validate_task_query({
        'status': 'COMPLETED',
        'search': "report",
        'dueFrom': "2025-01-01",
        'dueTo': "garbage",
        'completed': "true",
    })
    assert query['status'] == 'COMPLETED'
    assert query['search'] == "report"
    assert query['category'] is None
    assert query['due_from'] == datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert query['due_to'] is None
    assert query['completed'] is True


def test_query_completed_flag():
    assert validate_task_query({'completed': "false"})['completed'] is False
    assert validate_task_query({'completed': "anything"})['completed'] is False
    assert validate_task_query({})['completed'] is None


def test_query_rejects_bad_enum():
    with pytest.raises(TaskValidationError) as excinfo:
        validate_task_query({'priority': 'CRITICAL'})
    assert excinfo.value.issues[0]['field'] == 'priority'


@pytest.mark.parametrize("raw, expected", [
    ("  User@Example.COM ", "user@example.com"),
    ("not-an-email", None),
    ("", None),
    (None, None),
])
def test_normalize_email(raw, expected):
    assert normalize_email(raw) == expected
