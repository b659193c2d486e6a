import os
import json
from datetime import datetime
from typing import List, Any, Dict, Optional
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from config import settings

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def format_currency(amount: int) -> str:
    """``2000`` -> ``'Rp 2.000'`` (dot as thousands separator)."""
    return f"{settings.currency_symbol} {int(amount):,}".replace(",", ".")


def format_date(value: Optional[datetime]) -> str:
    return value.strftime("%d/%m/%Y") if value else "-"


def print_list_result(books: List[Any]) -> None:
    """Print the catalog in the current output mode.
    - plain: 'ID - Title by Author [available/copies]' lines, or 'No books in library.'
    - json: array of book dicts
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print("No books in library.")
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Category", style="cyan")
        table.add_column("Year", justify="right")
        table.add_column("Available", justify="center")
        for b in books:
            colour = "green" if b.available else "red"
            table.add_row(b.id, b.title, b.author, b.category, str(b.year),
                          f"[{colour}]{b.available_copies}/{b.copies}[/]")
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author} [{b.available_copies}/{b.copies}]")


def print_members_result(members: List[Any]) -> None:
    mode = get_output_mode()

    if not members:
        print("No members registered.")
        return

    if mode == "json":
        print(json.dumps([m.to_dict() for m in members], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="👥 Members", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Name", style="white")
        table.add_column("Email")
        table.add_column("Phone")
        table.add_column("Borrowed", justify="right")
        table.add_column("Fines", justify="right")
        for m in members:
            fines = f"[red]{format_currency(m.fines)}[/]" if m.fines else format_currency(0)
            table.add_row(m.id, m.name, m.email or "-", m.phone or "-", str(len(m.borrowed_books)), fines)
        _console.print(table)
    else:
        for m in members:
            print(f"{m.id} - {m.name} ({len(m.borrowed_books)} borrowed, fines {format_currency(m.fines)})")


def print_transactions_result(transactions: List[Any], library: Any, now: Optional[datetime] = None) -> None:
    """Print loans with member names and book titles looked up on ``library``."""
    mode = get_output_mode()
    now = now or datetime.now()

    if not transactions:
        print("No transactions found.")
        return

    if mode == "json":
        print(json.dumps([t.to_dict() for t in transactions], ensure_ascii=False))
        return

    def status_of(t: Any) -> str:
        if t.is_overdue(now):
            return "overdue"
        return t.status

    if mode == "rich":
        table = Table(title="🔄 Transactions", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Member")
        table.add_column("Book")
        table.add_column("Borrowed")
        table.add_column("Due")
        table.add_column("Returned")
        table.add_column("Status")
        table.add_column("Fine", justify="right")
        colours = {"borrowed": "yellow", "returned": "green", "overdue": "red"}
        for t in transactions:
            status = status_of(t)
            table.add_row(
                t.id,
                library.member_name(t.member_id),
                library.book_title(t.book_id),
                format_date(t.borrow_date),
                format_date(t.due_date),
                format_date(t.return_date),
                f"[{colours.get(status, 'white')}]{status}[/]",
                format_currency(t.fine) if t.fine else "-",
            )
        _console.print(table)
    else:
        for t in transactions:
            print(
                f"{t.id} - {library.book_title(t.book_id)} / {library.member_name(t.member_id)} "
                f"due {format_date(t.due_date)} [{status_of(t)}]"
            )


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print the ledger counters in the current output mode.
    - plain: one 'Label: value' line per counter
    - json: JSON object
    - rich: Panel with the main counters
    """
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    labels = [
        ("total_books", "Total Books"),
        ("total_members", "Total Members"),
        ("total_transactions", "Total Transactions"),
        ("books_on_loan", "Books On Loan"),
        ("overdue_books", "Overdue Books"),
    ]

    if mode == "json":
        print(json.dumps({key: stats.get(key, 0) for key, _ in labels}, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {stats.get(key, 0)}" for key, label in labels)
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, label in labels:
            print(f"{label}: {stats.get(key, 0)}")
