"""
Database Layer - Handles all database operations for Smart To-Do
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as fixed-width UTC ISO-8601 so stored values sort as text."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


class Database:
    """
    Database management class for SQLite3 operations.
    Handles connection management, schema creation, and CRUD operations.
    """

    TASK_FIELDS = {
        'title', 'description', 'status', 'previous_status', 'priority', 'category',
        'due_date', 'completed_at', 'email_notification', 'calendar_sync', 'calendar_event_id',
    }
    USER_FIELDS = {'name', 'email_verified', 'google_refresh_token', 'google_calendar_id'}

    def __init__(self, db_name: str = "tasks.db"):
        """Initialize database connection and create tables if needed."""
        self.db_name = db_name
        self.db_path = os.path.abspath(db_name)
        self._create_connection()
        self._create_tables()

    @contextmanager
    def get_connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        # SQLite LOWER() only folds ASCII
        conn.create_function("py_lower", 1, _py_lower, deterministic=True)
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _create_connection(self):
        """Create initial database connection and check connectivity."""
        try:
            with self.get_connection() as conn:
                conn.execute("SELECT 1")
            logger.info("[OK] Database connected: %s", self.db_path)
        except sqlite3.Error as e:
            logger.error("[!] Database connection error: %s", e)
            raise

    def _create_tables(self):
        """Create all required tables if they don't exist."""
        with self.get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    name TEXT,
                    email_verified TEXT,
                    google_refresh_token TEXT,
                    google_calendar_id TEXT DEFAULT 'primary',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    status TEXT NOT NULL DEFAULT 'PENDING'
                        CHECK(status IN ('PENDING', 'IN_PROGRESS', 'COMPLETED')),
                    previous_status TEXT
                        CHECK(previous_status IS NULL OR previous_status IN ('PENDING', 'IN_PROGRESS', 'COMPLETED')),
                    priority TEXT NOT NULL DEFAULT 'MEDIUM' CHECK(priority IN ('LOW', 'MEDIUM', 'HIGH')),
                    category TEXT,
                    due_date TEXT,
                    completed_at TEXT,
                    email_notification BOOLEAN NOT NULL DEFAULT 1,
                    calendar_sync BOOLEAN NOT NULL DEFAULT 1,
                    calendar_event_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_tasks_user_id ON tasks(user_id)")

            # Magic-link tokens; only the SHA-256 of the mailed token is stored
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS verification_tokens (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    identifier TEXT NOT NULL,
                    token_hash TEXT NOT NULL UNIQUE,
                    expires_at TEXT NOT NULL
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_tokens_identifier ON verification_tokens(identifier)"
            )

            conn.commit()
            logger.info("[OK] Database tables created/verified")

    def execute_query(self, query: str, params: Tuple = ()) -> List[sqlite3.Row]:
        """Execute SELECT query and return results."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()

    def execute_single(self, query: str, params: Tuple = ()) -> Optional[sqlite3.Row]:
        """Execute SELECT query and return single result."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchone()

    def execute_update(self, query: str, params: Tuple = ()) -> int:
        """Execute INSERT/UPDATE/DELETE query, return last inserted row ID."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            conn.commit()
            return cursor.lastrowid

    # ==================== USER OPERATIONS ====================

    def create_user(self, email: str, name: str = None, email_verified: str = None) -> int:
        """Create a user and return its ID."""
        now = to_iso(utcnow())
        query = """
            INSERT INTO users (email, name, email_verified, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
        """
        return self.execute_update(query, (email, name, email_verified, now, now))

    def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        result = self.execute_single("SELECT * FROM users WHERE id = ?", (user_id,))
        return dict(result) if result else None

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        result = self.execute_single("SELECT * FROM users WHERE email = ?", (email,))
        return dict(result) if result else None

    def update_user(self, user_id: int, **kwargs) -> bool:
        """Update user fields. Only updates fields provided in kwargs."""
        update_fields = {k: v for k, v in kwargs.items() if k in self.USER_FIELDS}
        if not update_fields:
            return False

        update_fields['updated_at'] = to_iso(utcnow())
        set_clause = ", ".join([f"{k} = ?" for k in update_fields.keys()])
        query = f"UPDATE users SET {set_clause} WHERE id = ?"
        self.execute_update(query, tuple(update_fields.values()) + (user_id,))
        return True

    # ==================== VERIFICATION TOKEN OPERATIONS ====================

    def create_verification_token(self, identifier: str, token_hash: str, expires_at: str) -> int:
        query = """
            INSERT INTO verification_tokens (identifier, token_hash, expires_at)
            VALUES (?, ?, ?)
        """
        return self.execute_update(query, (identifier, token_hash, expires_at))

    def get_verification_tokens(self, identifier: str) -> List[Dict[str, Any]]:
        query = "SELECT * FROM verification_tokens WHERE identifier = ?"
        return [dict(row) for row in self.execute_query(query, (identifier,))]

    def delete_verification_token(self, token_id: int) -> int:
        """Delete a token row; returns the number of rows removed."""
        with self.get_connection() as conn:
            cursor = conn.execute("DELETE FROM verification_tokens WHERE id = ?", (token_id,))
            return cursor.rowcount

    def delete_expired_tokens(self, now: str) -> int:
        with self.get_connection() as conn:
            cursor = conn.execute("DELETE FROM verification_tokens WHERE expires_at < ?", (now,))
            return cursor.rowcount

    # ==================== TASK OPERATIONS ====================

    def create_task(self, user_id: int, title: str, description: str = None, status: str = "PENDING",
                    priority: str = "MEDIUM", category: str = None, due_date: str = None,
                    completed_at: str = None, email_notification: bool = True,
                    calendar_sync: bool = True) -> int:
        """Create a new task and return its ID."""
        now = to_iso(utcnow())
        query = """
            INSERT INTO tasks
            (user_id, title, description, status, priority, category, due_date, completed_at,
             email_notification, calendar_sync, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        return self.execute_update(query, (
            user_id, title, description, status, priority, category, due_date, completed_at,
            email_notification, calendar_sync, now, now,
        ))

    def get_task(self, task_id: int) -> Optional[Dict[str, Any]]:
        """Get task by ID."""
        result = self.execute_single("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return self._task_row(result) if result else None

    def list_tasks(self, user_id: int, status: str = None, priority: str = None,
                   category: str = None, search: str = None, due_from: str = None,
                   due_to: str = None, completed: bool = None) -> List[Dict[str, Any]]:
        """
        Get a user's tasks with optional filters.

        Ordered by due date (undated last), then priority HIGH first, then newest first.
        """
        clauses = ["user_id = ?"]
        params: List[Any] = [user_id]

        if status:
            clauses.append("status = ?")
            params.append(status)
        if priority:
            clauses.append("priority = ?")
            params.append(priority)
        if category:
            clauses.append("category = ?")
            params.append(category)
        if search:
            pattern = "%" + _escape_like(search.lower()) + "%"
            clauses.append(
                "(py_lower(title) LIKE ? ESCAPE '\\' OR py_lower(COALESCE(description, '')) LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern])
        if due_from:
            clauses.append("due_date >= ?")
            params.append(due_from)
        if due_to:
            clauses.append("due_date <= ?")
            params.append(due_to)
        if completed is not None:
            clauses.append("completed_at IS NOT NULL" if completed else "completed_at IS NULL")

        query = f"""
            SELECT * FROM tasks
            WHERE {' AND '.join(clauses)}
            ORDER BY due_date IS NULL, due_date ASC,
                     CASE priority WHEN 'HIGH' THEN 0 WHEN 'MEDIUM' THEN 1 ELSE 2 END,
                     created_at DESC, id DESC
        """
        return [self._task_row(row) for row in self.execute_query(query, tuple(params))]

    def update_task(self, task_id: int, **kwargs) -> bool:
        """Update task fields. Only updates fields provided in kwargs."""
        update_fields = {k: v for k, v in kwargs.items() if k in self.TASK_FIELDS}

        if not update_fields:
            return False

        update_fields['updated_at'] = to_iso(utcnow())
        set_clause = ", ".join([f"{k} = ?" for k in update_fields.keys()])
        query = f"UPDATE tasks SET {set_clause} WHERE id = ?"

        self.execute_update(query, tuple(update_fields.values()) + (task_id,))
        return True

    def delete_task(self, task_id: int) -> bool:
        """Delete task; returns False when no row matched."""
        with self.get_connection() as conn:
            cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            return cursor.rowcount > 0

    def delete_tasks_for_user(self, user_id: int) -> int:
        with self.get_connection() as conn:
            cursor = conn.execute("DELETE FROM tasks WHERE user_id = ?", (user_id,))
            return cursor.rowcount

    @staticmethod
    def _task_row(row: sqlite3.Row) -> Dict[str, Any]:
        task = dict(row)
        task['email_notification'] = bool(task['email_notification'])
        task['calendar_sync'] = bool(task['calendar_sync'])
        return task

    # ==================== UTILITY OPERATIONS ====================

    def get_database_stats(self) -> Dict[str, int]:
        """Get statistics about database content."""
        stats = {}
        with self.get_connection() as conn:
            cursor = conn.cursor()
            for table in ['users', 'tasks', 'verification_tokens']:
                cursor.execute(f"SELECT COUNT(*) FROM {table}")
                stats[table] = cursor.fetchone()[0]
        return stats


def _py_lower(value: Optional[str]) -> Optional[str]:
    return value.lower() if value else value


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
