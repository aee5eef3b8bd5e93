"""
Tests for the management commands and console display
"""

import os
from datetime import timedelta

import pytest

from database import Database, to_iso, utcnow
from display import Display
from main import build_parser, main


@pytest.fixture
def cli_db_path(tmp_path, monkeypatch):
    path = str(tmp_path / "cli_tasks.db")
    monkeypatch.setenv("DATABASE_PATH", path)
    return path


def test_seed_replaces_users_tasks(cli_db_path):
    assert main(["seed", "Demo@Example.com"]) == 0
    assert main(["seed", "demo@example.com"]) == 0

    db = Database(cli_db_path)
    user = db.get_user_by_email("demo@example.com")
    tasks = db.list_tasks(user['id'])
    assert sorted(t['title'] for t in tasks) == [
        "Draft onboarding email copy", "Plan product requirements", "QA responsive UI",
    ]
    done = next(t for t in tasks if t['status'] == 'COMPLETED')
    assert done['completed_at'] is not None
    assert done['calendar_sync'] is False
    assert done['email_notification'] is False


def test_list_prints_table_and_summary(cli_db_path, capsys):
    main(["seed", "demo@example.com"])
    capsys.readouterr()

    assert main(["list", "demo@example.com", "--priority", "HIGH"]) == 0
    out = capsys.readouterr().out
    assert "Plan product requirements" in out
    assert "QA responsive UI" not in out
    assert "SUMMARY" in out


def test_list_unknown_user(cli_db_path, capsys):
    assert main(["list", "ghost@example.com"]) == 1
    assert "No account" in capsys.readouterr().out


def test_invalid_email_rejected(cli_db_path):
    assert main(["seed", "not-an-email"]) == 1


def test_init_db(cli_db_path, capsys):
    assert main(["init-db"]) == 0
    assert "verification_tokens" in capsys.readouterr().out


def test_relative_database_path_uses_working_directory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_PATH", "relative_tasks.db")

    assert main(["seed", "demo@example.com"]) == 0
    assert (tmp_path / "relative_tasks.db").exists()
    db_path = Database("relative_tasks.db").db_path
    assert os.path.realpath(db_path) == os.path.realpath(tmp_path / "relative_tasks.db")


def test_parser_rejects_unknown_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["explode"])


# ==================== DISPLAY ====================

def test_tasks_table():
    display = Display()
    assert "No tasks found." in display.format_tasks_table([])

    task = {
        'id': 1, 'title': "Long " * 20, 'priority': 'HIGH', 'status': 'IN_PROGRESS',
        'category': None, 'due_date': to_iso(utcnow() + timedelta(days=5)),
        'calendar_event_id': "evt-1",
    }
    table = display.format_tasks_table([task])
    assert "IN PROGRESS" in table
    assert ("Long " * 10).strip() in table
    assert "yes" in table


def test_due_date_formatting():
    display = Display()
    now = utcnow()
    assert display._format_date(None) == "-"
    overdue = display._format_date(to_iso(now - timedelta(hours=1)), now=now)
    assert overdue.startswith(Display.PRIORITY_COLORS['HIGH'])
    later = display._format_date(to_iso(now + timedelta(days=5)), now=now)
    assert later == (now + timedelta(days=5)).strftime("%Y-%m-%d %H:%M")
