"""
Analytics Engine - Dashboard counters for a user's tasks
"""

from datetime import datetime, timedelta
from typing import Any, Dict

from database import Database, to_iso, utcnow

DUE_SOON_WINDOW = timedelta(hours=48)


class Analytics:
    """
    Provides the dashboard summary: open, completed and due-soon counts,
    plus breakdowns by status and priority.
    """

    def __init__(self, db: Database):
        """Initialize analytics engine with database instance."""
        self.db = db

    def get_task_summary(self, user_id: int, now: datetime = None) -> Dict[str, Any]:
        """Counts for the dashboard cards. Due soon = not completed and due within 48 hours."""
        now = now or utcnow()
        query = """
            SELECT
                COUNT(*) AS total,
                COUNT(CASE WHEN status = 'COMPLETED' THEN 1 END) AS completed,
                COUNT(CASE WHEN status != 'COMPLETED' AND due_date >= ? AND due_date <= ? THEN 1 END) AS due_soon
            FROM tasks
            WHERE user_id = ?
        """
        row = self.db.execute_single(query, (to_iso(now), to_iso(now + DUE_SOON_WINDOW), user_id))
        total = row['total'] if row else 0
        completed = row['completed'] if row else 0

        return {
            'total': total,
            'open': total - completed,
            'completed': completed,
            'dueSoon': row['due_soon'] if row else 0,
            'byStatus': self.get_task_counts_by_status(user_id),
            'byPriority': self.get_task_counts_by_priority(user_id),
        }

    def get_task_counts_by_status(self, user_id: int) -> Dict[str, int]:
        """Get task counts grouped by status."""
        counts = {'PENDING': 0, 'IN_PROGRESS': 0, 'COMPLETED': 0}
        query = "SELECT status, COUNT(*) AS count FROM tasks WHERE user_id = ? GROUP BY status"
        for row in self.db.execute_query(query, (user_id,)):
            counts[row['status']] = row['count']
        return counts

    def get_task_counts_by_priority(self, user_id: int) -> Dict[str, int]:
        """Get task counts grouped by priority."""
        counts = {'HIGH': 0, 'MEDIUM': 0, 'LOW': 0}
        query = "SELECT priority, COUNT(*) AS count FROM tasks WHERE user_id = ? GROUP BY priority"
        for row in self.db.execute_query(query, (user_id,)):
            counts[row['priority']] = row['count']
        return counts
