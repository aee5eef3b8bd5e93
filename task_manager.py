"""
Task Manager Module - Task CRUD, status transitions and integration fan-out
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from database import Database, to_iso, utcnow
from validations import validate_task_create, validate_task_query, validate_task_update

logger = logging.getLogger(__name__)

PENDING = 'PENDING'
IN_PROGRESS = 'IN_PROGRESS'
COMPLETED = 'COMPLETED'


class TaskNotFoundError(LookupError):
    """No task with the requested ID exists."""


class TaskAccessError(PermissionError):
    """The task exists but belongs to another user."""


def status_transition(existing: Mapping[str, Any], next_status: Optional[str],
                      now: datetime) -> Dict[str, Any]:
    """
    Bookkeeping columns for a status change.

    Entering COMPLETED remembers the prior status and stamps completed_at;
    leaving COMPLETED clears both. Anything else changes neither.
    """
    current = existing['status']
    if next_status is None or next_status == current:
        return {}
    if next_status == COMPLETED:
        return {'previous_status': current, 'completed_at': to_iso(now)}
    if current == COMPLETED:
        return {'previous_status': None, 'completed_at': None}
    return {}


def toggled_status(task: Mapping[str, Any]) -> str:
    """Status a completion toggle moves to; completed tasks go back to where they were."""
    if task['status'] != COMPLETED:
        return COMPLETED
    if task.get('previous_status') in (PENDING, IN_PROGRESS):
        return task['previous_status']
    return PENDING


class TaskManager:
    """
    Manages all task-related operations for a signed-in user.

    The database row is the source of truth. Email and calendar calls run
    after the write; their failures are logged and never undo the write.
    """

    def __init__(self, db: Database, notifier=None, calendar=None):
        """Initialize task manager with database and optional integrations."""
        self.db = db
        self.notifier = notifier
        self.calendar = calendar

    # ==================== TASK RETRIEVAL ====================

    def list_tasks(self, user_id: int, query: Mapping[str, Any] = None) -> List[Dict[str, Any]]:
        """Get the user's tasks, filtered by query-string style parameters."""
        filters = validate_task_query(query or {})
        for key in ('due_from', 'due_to'):
            filters[key] = to_iso(filters[key])
        return self.db.list_tasks(user_id, **filters)

    def get_task(self, user_id: int, task_id: int) -> Dict[str, Any]:
        return self._get_owned_task(user_id, task_id)

    def _get_owned_task(self, user_id: int, task_id: int) -> Dict[str, Any]:
        task = self.db.get_task(task_id)
        if not task:
            raise TaskNotFoundError("Task not found")
        if task['user_id'] != user_id:
            raise TaskAccessError("Unauthorized")
        return task

    # ==================== TASK CREATION & EDITING ====================

    def create_task(self, user: Dict[str, Any], payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Validate and insert a task, then sync its calendar event and notify the owner."""
        data = validate_task_create(payload)
        data['due_date'] = to_iso(data['due_date'])
        data['completed_at'] = to_iso(utcnow()) if data['status'] == COMPLETED else None

        task_id = self.db.create_task(user['id'], **data)
        task = self.db.get_task(task_id)
        logger.info("[OK] Task created: '%s' (ID: %s)", task['title'], task_id)

        task = self._sync_calendar(task, user)
        self._notify('created', task, user)
        return task

    def update_task(self, user: Dict[str, Any], task_id: int,
                    payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Apply a partial update, keeping completion bookkeeping consistent."""
        existing = self._get_owned_task(user['id'], task_id)
        changes = validate_task_update(payload)
        if 'due_date' in changes:
            changes['due_date'] = to_iso(changes['due_date'])
        changes.update(status_transition(existing, changes.get('status'), utcnow()))

        self.db.update_task(task_id, **changes)
        task = self.db.get_task(task_id)
        logger.info("[OK] Task %s updated", task_id)

        task = self._sync_calendar(task, user)
        self._notify('updated', task, user)
        return task

    def toggle_task_status(self, user: Dict[str, Any], task_id: int) -> Dict[str, Any]:
        """Flip completion: mark done, or restore the status the task had before."""
        existing = self._get_owned_task(user['id'], task_id)
        return self.update_task(user, task_id, {'status': toggled_status(existing)})

    def delete_task(self, user: Dict[str, Any], task_id: int) -> Dict[str, Any]:
        """Notify, drop the calendar event, then delete. Returns the deleted task."""
        task = self._get_owned_task(user['id'], task_id)

        self._notify('deleted', task, user)
        if task['calendar_event_id'] and self.calendar:
            try:
                self.calendar.delete_event(task['calendar_event_id'], user)
            except Exception:
                logger.exception("[!] Calendar cleanup failed, task %s still deleted", task_id)

        self.db.delete_task(task_id)
        logger.info("[OK] Task '%s' deleted", task['title'])
        return task

    # ==================== INTEGRATIONS ====================

    def _sync_calendar(self, task: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """
        Bring the task's calendar event in line with the row just written.

        Dated tasks with sync on get an event created or updated and the
        returned ID stored. Otherwise any linked event is deleted and the
        stored ID cleared.
        """
        if not self.calendar:
            return task

        event_id = task['calendar_event_id']
        if task['due_date'] and task['calendar_sync']:
            try:
                if event_id:
                    new_event_id = self.calendar.update_event(event_id, task, user)
                else:
                    new_event_id = self.calendar.create_event(task, user)
            except Exception:
                logger.exception("[!] Calendar sync failed, task %s still saved", task['id'])
                return task

            if new_event_id and new_event_id != event_id:
                self.db.update_task(task['id'], calendar_event_id=new_event_id)
                return self.db.get_task(task['id'])
            return task

        if not event_id:
            return task
        try:
            self.calendar.delete_event(event_id, user)
        except Exception:
            logger.exception("[!] Calendar cleanup failed, task %s still saved", task['id'])
        self.db.update_task(task['id'], calendar_event_id=None)
        return self.db.get_task(task['id'])

    def _notify(self, event: str, task: Dict[str, Any], user: Dict[str, Any]) -> None:
        if not task['email_notification'] or not self.notifier:
            return
        try:
            self.notifier.send_task_email(event, task, user.get('email'))
        except Exception:
            logger.exception("[!] Email notification failed, task %s still %s", task['id'], event)


def serialize_task(task: Dict[str, Any]) -> Dict[str, Any]:
    """API representation of a task row (camelCase keys)."""
    return {
        'id': task['id'],
        'title': task['title'],
        'description': task['description'],
        'status': task['status'],
        'previousStatus': task['previous_status'],
        'priority': task['priority'],
        'category': task['category'],
        'dueDate': task['due_date'],
        'completedAt': task['completed_at'],
        'createdAt': task['created_at'],
        'updatedAt': task['updated_at'],
        'emailNotification': task['email_notification'],
        'calendarSync': task['calendar_sync'],
        'calendarEventId': task['calendar_event_id'],
    }
