"""
Display Module - Handles console UI and formatting
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List

from colorama import Fore, Style, init
from tabulate import tabulate

from database import from_iso, utcnow

# Initialize colorama for cross-platform colors
init(autoreset=True)


class Display:
    """
    Console output for the management commands: task tables,
    dashboard counters and database statistics.
    """

    # Color schemes
    PRIORITY_COLORS = {
        'HIGH': Fore.RED,
        'MEDIUM': Fore.YELLOW,
        'LOW': Fore.GREEN,
    }

    STATUS_COLORS = {
        'COMPLETED': Fore.GREEN,
        'IN_PROGRESS': Fore.CYAN,
        'PENDING': Fore.WHITE,
    }

    STATUS_ICONS = {'COMPLETED': '✓', 'IN_PROGRESS': '⟳', 'PENDING': '◯'}

    # ==================== UTILITY FUNCTIONS ====================

    def _colored_text(self, text: str, color: str) -> str:
        """Return colored text."""
        return f"{color}{text}{Style.RESET_ALL}"

    def _format_priority(self, priority: str) -> str:
        color = self.PRIORITY_COLORS.get(priority, Fore.WHITE)
        return self._colored_text(priority, color)

    def _format_status(self, status: str) -> str:
        color = self.STATUS_COLORS.get(status, Fore.WHITE)
        icon = self.STATUS_ICONS.get(status, '•')
        return self._colored_text(f"{icon} {status.replace('_', ' ')}", color)

    def _format_date(self, date_str: str, now: datetime = None) -> str:
        """Format due date with color based on urgency."""
        due = from_iso(date_str)
        if due is None:
            return "-"

        now = now or utcnow()
        label = due.strftime("%Y-%m-%d %H:%M")
        if due < now:
            return self._colored_text(label, Fore.RED)
        if due - now <= timedelta(hours=48):
            return self._colored_text(label, Fore.YELLOW)
        return label

    # ==================== TABLE DISPLAY ====================

    def format_tasks_table(self, tasks: List[Dict[str, Any]]) -> str:
        """Render tasks as a grid table."""
        if not tasks:
            return self._colored_text("No tasks found.", Fore.YELLOW)

        headers = ["ID", "Title", "Priority", "Status", "Category", "Due", "Calendar"]
        rows = []
        for task in tasks:
            rows.append([
                task['id'],
                task['title'][:50],  # Truncate long titles
                self._format_priority(task['priority']),
                self._format_status(task['status']),
                task['category'] or "-",
                self._format_date(task['due_date']),
                "yes" if task['calendar_event_id'] else "-",
            ])
        return tabulate(rows, headers=headers, tablefmt="grid", showindex=False)

    def display_tasks_table(self, tasks: List[Dict[str, Any]]) -> None:
        print("\n" + self.format_tasks_table(tasks))

    def display_summary(self, summary: Dict[str, Any]) -> None:
        """Dashboard counters, as shown on the web dashboard cards."""
        due_soon = self._colored_text(f"Due soon: {summary['dueSoon']}", Fore.YELLOW)
        print(f"\n{Fore.CYAN}SUMMARY{Style.RESET_ALL}")
        print(f"  Total: {summary['total']} | Open: {summary['open']} | "
              f"Completed: {summary['completed']} | {due_soon}")

        rows = [[self._format_status(status), count] for status, count in summary['byStatus'].items()]
        print("\n" + tabulate(rows, headers=["Status", "Tasks"], tablefmt="simple"))

    def display_database_stats(self, db_path: str, stats: Dict[str, int]) -> None:
        print(f"\nDatabase: {db_path}")
        rows = [[table, count] for table, count in stats.items()]
        print(tabulate(rows, headers=["Table", "Records"], tablefmt="grid"))
