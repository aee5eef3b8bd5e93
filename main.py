"""
Main Application - Management commands for Smart To-Do

    python main.py init-db
    python main.py seed you@example.com
    python main.py list you@example.com
    python main.py google-auth
    python main.py serve --port 5000
"""

import argparse
import logging
import sys
from datetime import timedelta

from colorama import Fore, Style
from google_auth_oauthlib.flow import InstalledAppFlow

from analytics import Analytics
from config import Config, configure_logging
from database import Database, to_iso, utcnow
from display import Display
from email_notifier import GmailEmailBackend
from google_calendar_sync import GoogleCalendarSync
from task_manager import TaskManager
from user_manager import UserManager
from validations import normalize_email

logger = logging.getLogger(__name__)

GOOGLE_AUTH_SCOPES = GoogleCalendarSync.SCOPES + GmailEmailBackend.SCOPES


def sample_tasks(now):
    """Demo tasks for a fresh account."""
    return [
        {
            'title': "Plan product requirements",
            'description': "Outline MVP scope and success metrics for smart to-do app.",
            'priority': "HIGH",
            'status': "IN_PROGRESS",
            'category': "Product",
            'due_date': to_iso(now + timedelta(days=7)),
        },
        {
            'title': "Draft onboarding email copy",
            'description': "Write first-version email for new task notifications.",
            'priority': "MEDIUM",
            'status': "PENDING",
            'category': "Marketing",
            'due_date': to_iso(now + timedelta(days=1)),
        },
        {
            'title': "QA responsive UI",
            'description': "Verify desktop/mobile breakpoints and interaction states.",
            'priority': "LOW",
            'status': "COMPLETED",
            'category': "QA",
            'completed_at': to_iso(now),
            'calendar_sync': False,
            'email_notification': False,
        },
    ]


class SmartTodoCLI:
    """
    Wires the service layer for console use. Seeding and listing work on
    the database directly and never call the email or calendar services.
    """

    def __init__(self, config: Config):
        self.config = config
        self.db = Database(config.database_path)
        self.users = UserManager(self.db)
        self.tasks = TaskManager(self.db)
        self.analytics = Analytics(self.db)
        self.display = Display()

    def init_db(self, args) -> int:
        print(f"{Fore.GREEN}[OK]{Style.RESET_ALL} Database ready")
        self.display.display_database_stats(self.db.db_path, self.db.get_database_stats())
        return 0

    def seed(self, args) -> int:
        """Replace the user's tasks with the sample set."""
        try:
            user = self.users.get_or_create_user(self._email(args.email))
        except ValueError as e:
            print(f"{Fore.RED}[!] {e}{Style.RESET_ALL}")
            return 1

        removed = self.db.delete_tasks_for_user(user['id'])
        for task in sample_tasks(utcnow()):
            self.db.create_task(user['id'], **task)

        print(f"{Fore.GREEN}[OK]{Style.RESET_ALL} Seeded 3 sample tasks for {user['email']} "
              f"(removed {removed})")
        return 0

    def list_tasks(self, args) -> int:
        try:
            user = self.users.get_user_by_email(self._email(args.email))
        except ValueError as e:
            print(f"{Fore.RED}[!] {e}{Style.RESET_ALL}")
            return 1
        if not user:
            print(f"{Fore.RED}[!] No account for {args.email}{Style.RESET_ALL}")
            return 1

        query = {'status': args.status, 'priority': args.priority, 'search': args.search}
        self.display.display_tasks_table(self.tasks.list_tasks(user['id'], query))
        self.display.display_summary(self.analytics.get_task_summary(user['id']))
        return 0

    def google_auth(self, args) -> int:
        """
        Installed-app OAuth flow for the application-wide refresh token.

        The printed token can be used as GOOGLE_REFRESH_TOKEN (calendar)
        and GMAIL_REFRESH_TOKEN (email) when both use the same client.
        """
        client_id = self.config.google_client_id or self.config.gmail_client_id
        client_secret = self.config.google_client_secret or self.config.gmail_client_secret
        if not client_id or not client_secret:
            print(f"{Fore.RED}[!] Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET first{Style.RESET_ALL}")
            return 1

        client_config = {
            "installed": {
                "client_id": client_id,
                "client_secret": client_secret,
                "auth_uri": GoogleCalendarSync.AUTH_URI,
                "token_uri": GoogleCalendarSync.TOKEN_URI,
                "redirect_uris": ["http://localhost"],
            }
        }
        flow = InstalledAppFlow.from_client_config(client_config, GOOGLE_AUTH_SCOPES)
        print("A browser window will open. Sign in and allow access.\n")
        creds = flow.run_local_server(
            port=args.port, open_browser=True, access_type='offline', prompt='consent'
        )

        if not creds.refresh_token:
            print(f"{Fore.RED}[!] No refresh token returned. Revoke the app's access and retry.{Style.RESET_ALL}")
            return 1

        print(f"\n{Fore.GREEN}[OK]{Style.RESET_ALL} Authentication successful")
        print("Save this value as GOOGLE_REFRESH_TOKEN and/or GMAIL_REFRESH_TOKEN:")
        print(creds.refresh_token)
        return 0

    def serve(self, args) -> int:
        from flask_api import create_app

        app = create_app()
        print(f"\n[OK] API available at: http://{args.host}:{args.port}")
        print("Press Ctrl+C to stop\n")
        try:
            app.run(host=args.host, port=args.port, debug=args.debug,
                    use_reloader=False, threaded=True)
        except KeyboardInterrupt:
            print("\n[OK] Server stopped by user")
        return 0

    @staticmethod
    def _email(raw: str) -> str:
        email = normalize_email(raw)
        if not email:
            raise ValueError(f"Invalid email address: {raw}")
        return email


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="smart-todo", description="Smart To-Do management commands")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the database schema")

    seed = sub.add_parser("seed", help="Load sample tasks for a user")
    seed.add_argument("email")

    list_cmd = sub.add_parser("list", help="Show a user's tasks")
    list_cmd.add_argument("email")
    list_cmd.add_argument("--status", choices=["PENDING", "IN_PROGRESS", "COMPLETED"])
    list_cmd.add_argument("--priority", choices=["LOW", "MEDIUM", "HIGH"])
    list_cmd.add_argument("--search")

    google = sub.add_parser("google-auth", help="Obtain a Google refresh token")
    google.add_argument("--port", type=int, default=8080)

    serve = sub.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=5000)
    serve.add_argument("--debug", action="store_true")

    return parser


COMMANDS = {
    "init-db": SmartTodoCLI.init_db,
    "seed": SmartTodoCLI.seed,
    "list": SmartTodoCLI.list_tasks,
    "google-auth": SmartTodoCLI.google_auth,
    "serve": SmartTodoCLI.serve,
}


def main(argv=None) -> int:
    """Entry point for the application."""
    args = build_parser().parse_args(argv)
    config = Config.from_env()
    configure_logging(config.log_level)

    try:
        cli = SmartTodoCLI(config)
        return COMMANDS[args.command](cli, args)
    except Exception as e:
        logger.exception("Command '%s' failed", args.command)
        print(f"\n{Fore.RED}[!] Fatal error: {e}{Style.RESET_ALL}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
