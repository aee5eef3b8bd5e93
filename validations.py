"""
Validation - Payload and query validation for task and auth requests
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from dateutil import parser as date_parser

TASK_STATUSES = ('PENDING', 'IN_PROGRESS', 'COMPLETED')
TASK_PRIORITIES = ('LOW', 'MEDIUM', 'HIGH')

TITLE_MAX = 140
DESCRIPTION_MAX = 2000
CATEGORY_MAX = 120

# API field name -> column name
FIELD_ALIASES = {
    'dueDate': 'due_date',
    'emailNotification': 'email_notification',
    'calendarSync': 'calendar_sync',
}

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class TaskValidationError(ValueError):
    """Raised when a request payload fails validation; carries every issue found."""

    def __init__(self, issues: List[Dict[str, str]]):
        self.issues = issues
        message = issues[0]['message'] if issues else "Invalid task data"
        super().__init__(message)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string into an aware UTC datetime.

    Empty string and None mean "no date". Naive values are read as UTC.
    Raises ValueError for anything unparsable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = date_parser.isoparse(value)
    else:
        raise ValueError("Invalid date")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _normalize_keys(payload: Mapping[str, Any]) -> Dict[str, Any]:
    return {FIELD_ALIASES.get(key, key): value for key, value in payload.items()}


def _check_text(data, field, max_len, issues, cleaned):
    value = data[field]
    if value is None or value == "":
        cleaned[field] = None
    elif not isinstance(value, str):
        issues.append({'field': field, 'message': f"{field} must be a string"})
    elif len(value) > max_len:
        issues.append({'field': field, 'message': f"{field} must be at most {max_len} characters"})
    else:
        cleaned[field] = value


def _check_choice(data, field, choices, issues, cleaned):
    value = data[field]
    if value not in choices:
        issues.append({
            'field': field,
            'message': f"Invalid {field}: expected one of {', '.join(choices)}",
        })
    else:
        cleaned[field] = value


def _check_bool(data, field, issues, cleaned):
    value = data[field]
    if not isinstance(value, bool):
        issues.append({'field': field, 'message': f"{field} must be a boolean"})
    else:
        cleaned[field] = value


def _validate_fields(data: Dict[str, Any], issues: List[Dict[str, str]]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}

    if 'title' in data:
        title = data['title']
        if not isinstance(title, str) or not title:
            issues.append({'field': 'title', 'message': "Task title must be a non-empty string"})
        elif len(title) > TITLE_MAX:
            issues.append({'field': 'title', 'message': f"title must be at most {TITLE_MAX} characters"})
        else:
            cleaned['title'] = title

    if 'description' in data:
        _check_text(data, 'description', DESCRIPTION_MAX, issues, cleaned)
    if 'category' in data:
        _check_text(data, 'category', CATEGORY_MAX, issues, cleaned)
    if 'status' in data:
        _check_choice(data, 'status', TASK_STATUSES, issues, cleaned)
    if 'priority' in data:
        _check_choice(data, 'priority', TASK_PRIORITIES, issues, cleaned)
    if 'email_notification' in data:
        _check_bool(data, 'email_notification', issues, cleaned)
    if 'calendar_sync' in data:
        _check_bool(data, 'calendar_sync', issues, cleaned)

    if 'due_date' in data:
        try:
            cleaned['due_date'] = parse_datetime(data['due_date'])
        except (ValueError, OverflowError):
            issues.append({'field': 'due_date', 'message': "dueDate must be an ISO-8601 datetime"})

    return cleaned


def validate_task_create(payload: Any) -> Dict[str, Any]:
    """Validate a create payload and apply defaults. Returns column-named values."""
    if not isinstance(payload, Mapping):
        raise TaskValidationError([{'field': '', 'message': "Invalid task data"}])

    data = _normalize_keys(payload)
    issues: List[Dict[str, str]] = []
    if 'title' not in data:
        issues.append({'field': 'title', 'message': "Task title is required"})

    cleaned = _validate_fields(data, issues)
    if issues:
        raise TaskValidationError(issues)

    return {
        'title': cleaned['title'],
        'description': cleaned.get('description'),
        'status': cleaned.get('status', 'PENDING'),
        'priority': cleaned.get('priority', 'MEDIUM'),
        'category': cleaned.get('category'),
        'due_date': cleaned.get('due_date'),
        'email_notification': cleaned.get('email_notification', True),
        'calendar_sync': cleaned.get('calendar_sync', True),
    }


def validate_task_update(payload: Any) -> Dict[str, Any]:
    """Validate a partial update payload. Only fields present in the payload are returned."""
    if not isinstance(payload, Mapping):
        raise TaskValidationError([{'field': '', 'message': "Invalid task data"}])

    issues: List[Dict[str, str]] = []
    cleaned = _validate_fields(_normalize_keys(payload), issues)
    if issues:
        raise TaskValidationError(issues)
    return cleaned


def validate_task_query(args: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate list filters taken from a query string.

    Unparsable due bounds are dropped rather than rejected.
    """
    data = {key: args.get(key) for key in
            ('status', 'priority', 'category', 'search', 'dueFrom', 'dueTo', 'completed')}
    issues: List[Dict[str, str]] = []
    query: Dict[str, Any] = {}

    if data['status']:
        _check_choice(data, 'status', TASK_STATUSES, issues, query)
    if data['priority']:
        _check_choice(data, 'priority', TASK_PRIORITIES, issues, query)
    if issues:
        raise TaskValidationError(issues)

    query['category'] = data['category'] or None
    query['search'] = data['search'] or None

    for key, column in (('dueFrom', 'due_from'), ('dueTo', 'due_to')):
        try:
            query[column] = parse_datetime(data[key])
        except (ValueError, OverflowError):
            query[column] = None

    completed = data['completed']
    query['completed'] = (completed == 'true') if completed else None
    return query


def normalize_email(email: Any) -> Optional[str]:
    """Lower-case and trim an email address; None when it is not a valid address."""
    if not isinstance(email, str):
        return None
    email = email.strip().lower()
    return email if EMAIL_PATTERN.match(email) else None
