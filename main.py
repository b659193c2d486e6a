import logging
import sys
from datetime import datetime
from functools import wraps
from typing import Any, Callable, Dict, List, Optional

import typer
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from book import Book
from config import settings
from exceptions import AmbiguousMatchError, LibraryError, OperationCancelledError, ValidationError
from library import Library, SearchFilters
from member import Member
from records import Transaction
from utils.ui_helpers import (
    format_currency,
    format_date,
    print_list_result,
    print_members_result,
    print_stats_result,
    print_transactions_result,
    set_output_mode,
)

APP_NAME = settings.app_name

logger = logging.getLogger(__name__)
console = Console()


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO if settings.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Single ledger instance shared by the menu and the commands
class LibraryManager:
    _instance: Optional[Library] = None

    @classmethod
    def get_instance(cls) -> Library:
        if cls._instance is None:
            cls._instance = Library()
            if cls._instance.load_error:
                console.print(
                    f"[bold red]Could not read the data file:[/] {escape(cls._instance.load_error)}\n"
                    "[yellow]Starting with an empty ledger; the old file is backed up on the next save.[/]"
                )
        return cls._instance


def _describe(record: Any) -> str:
    lib = LibraryManager.get_instance()
    if isinstance(record, Book):
        return f"{record.id} - {record.title} by {record.author} [{record.available_copies}/{record.copies}]"
    if isinstance(record, Member):
        return f"{record.id} - {record.name} ({record.email or 'no email'})"
    if isinstance(record, Transaction):
        return (f"{record.id} - {lib.book_title(record.book_id)} / {lib.member_name(record.member_id)}"
                f" due {format_date(record.due_date)}")
    return str(record)


# --- Typer CLI application ---
app = typer.Typer(help="Library circulation ledger")


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (e.g. output mode)."""
    _configure_logging()
    if output:
        set_output_mode(output)


def cli_errors(func):
    """Print ledger errors and exit with status 1 instead of a traceback."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            result = func(*args, **kwargs)
        except AmbiguousMatchError as e:
            print(f"Error: {e}")
            for candidate in e.candidates:
                print(f"  {_describe(candidate)}")
            print("Repeat the command with one of the ids above.")
            raise typer.Exit(code=1)
        except LibraryError as e:
            print(f"Error: {e}")
            raise typer.Exit(code=1)
        if LibraryManager.get_instance().last_save_ok is False:
            print("Warning: changes could not be saved to disk.")
        return result
    return wrapper


@app.command("list")
def cli_list():
    """List all books in the catalog."""
    print_list_result(LibraryManager.get_instance().list_books())


@app.command("add-book")
@cli_errors
def cli_add_book(
    title: str,
    author: str = typer.Option("", "--author", "-a"),
    isbn: str = typer.Option("", "--isbn"),
    category: str = typer.Option("", "--category", "-c"),
    publisher: str = typer.Option("", "--publisher"),
    year: Optional[int] = typer.Option(None, "--year"),
    pages: int = typer.Option(0, "--pages"),
    copies: int = typer.Option(1, "--copies"),
    description: str = typer.Option("", "--description"),
    location: str = typer.Option("", "--location"),
):
    """Add a book to the catalog."""
    lib = LibraryManager.get_instance()
    warning = lib.check_isbn(isbn)
    if warning:
        print(f"Warning: {warning}")
    book = lib.add_book({
        "title": title, "author": author, "isbn": isbn, "category": category,
        "publisher": publisher, "year": year, "pages": pages, "copies": copies,
        "description": description, "location": location,
    })
    print(f"Added book {book.id}: {book.title} by {book.author}")


@app.command("add-member")
@cli_errors
def cli_add_member(
    name: str,
    email: str = typer.Option("", "--email", "-e"),
    phone: str = typer.Option("", "--phone", "-p"),
    address: str = typer.Option("", "--address"),
):
    """Register a new member."""
    member = LibraryManager.get_instance().add_member(
        {"name": name, "email": email, "phone": phone, "address": address}
    )
    print(f"Added member {member.id}: {member.name}")


@app.command("members")
def cli_members(with_fines: bool = typer.Option(False, "--with-fines", help="Only members with outstanding fines")):
    """List members."""
    lib = LibraryManager.get_instance()
    print_members_result(lib.members_with_fines() if with_fines else lib.list_members())


@app.command("search")
def cli_search(query: str = typer.Argument(..., help="Text to look for in title, author, category or ISBN")):
    """Search the catalog."""
    books = LibraryManager.get_instance().search_books(query)
    if not books:
        print(f"No books match '{query}'.")
        return
    print_list_result(books)


@app.command("borrow")
@cli_errors
def cli_borrow(
    member: str = typer.Argument(..., help="Member id or part of the name"),
    book: str = typer.Argument(..., help="Book id or part of the title"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Lend even if the member has outstanding fines"),
):
    """Lend a book to a member."""
    lib = LibraryManager.get_instance()
    try:
        txn = lib.borrow_book(member, book, confirm=lambda m: yes)
    except OperationCancelledError:
        print("Member has outstanding fines; repeat with --yes to lend anyway.")
        raise typer.Exit(code=1)
    print(f"Loan {txn.id}: {lib.book_title(txn.book_id)} to {lib.member_name(txn.member_id)}, "
          f"due {format_date(txn.due_date)}")


@app.command("return")
@cli_errors
def cli_return(query: str = typer.Argument(..., help="Transaction id or part of the member name")):
    """Return a borrowed book."""
    lib = LibraryManager.get_instance()
    txn = lib.return_book(query)
    print(f"Returned {lib.book_title(txn.book_id)} from {lib.member_name(txn.member_id)}")
    if txn.fine:
        print(f"Late fine: {format_currency(txn.fine)}")


@app.command("pay")
@cli_errors
def cli_pay(member: str, amount: str):
    """Pay part or all of a member's fines."""
    lib = LibraryManager.get_instance()
    payment = lib.pay_fine(member, amount)
    remaining = lib.get_member(payment.member_id).fines
    print(f"Payment {payment.id}: {format_currency(payment.amount)} received, "
          f"{format_currency(remaining)} outstanding")


@app.command("stats")
def cli_stats():
    """Show ledger statistics."""
    print_stats_result(LibraryManager.get_instance().get_statistics())


@app.command("overdue")
def cli_overdue():
    """List overdue loans."""
    lib = LibraryManager.get_instance()
    print_transactions_result(lib.overdue_transactions(), lib)


@app.command("export")
@cli_errors
def cli_export(path: Optional[str] = typer.Argument(None, help="Target CSV file")):
    """Export the catalog to CSV."""
    path = _csv_path(path)
    count = LibraryManager.get_instance().export_books(path)
    print(f"Exported {count} books to {path}")


@app.command("import")
@cli_errors
def cli_import(path: str):
    """Import books from a CSV file."""
    books, skipped = LibraryManager.get_instance().import_books(path)
    print(f"Imported {len(books)} books, skipped {skipped} rows")


@app.command("backup")
@cli_errors
def cli_backup(list_only: bool = typer.Option(False, "--list", help="List existing backups instead")):
    """Save now (backing up the current file) or list backups."""
    lib = LibraryManager.get_instance()
    if list_only:
        backups = lib.list_backups()
        if not backups:
            print("No backups found.")
        for b in backups:
            print(f"{b['name']} ({b['size']} bytes, {b['modified']:%Y-%m-%d %H:%M})")
        return
    if lib.save():
        print("Data saved and previous file backed up.")
    else:
        print("Backup failed; see the log for details.")
        raise typer.Exit(code=1)


@app.command("menu")
def cli_menu():
    """Start the interactive menu."""
    raise typer.Exit(code=run_menu())


def _csv_path(path: Optional[str]) -> str:
    if not path:
        path = f"books_export_{datetime.now():%Y%m%d}"
    if not path.lower().endswith(".csv"):
        path += ".csv"
    return path


# --- Interactive menu ---
def _ask(label: str, default: str = "") -> str:
    return Prompt.ask(label, default=default, show_default=bool(default)).strip()


def _ask_int(label: str, default: Optional[int] = None) -> Optional[int]:
    raw = _ask(label, "" if default is None else str(default))
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{label} must be a whole number.") from None


def _pick(resolver: Callable[[str], Any], query: str) -> Any:
    """Resolve ``query``, letting the user choose when several records match."""
    try:
        return resolver(query)
    except AmbiguousMatchError as e:
        console.print(f"[yellow]{escape(str(e))}[/]")
        for i, candidate in enumerate(e.candidates, 1):
            console.print(f"  [cyan]{i}[/]. {escape(_describe(candidate))}")
        choices = [str(i) for i in range(len(e.candidates) + 1)]
        index = int(Prompt.ask("Choose (0 to cancel)", choices=choices, default="0"))
        if index == 0:
            raise OperationCancelledError("Nothing selected.")
        return e.candidates[index - 1]


def _success(message: str) -> None:
    console.print(f"[green]✅ {message}[/]")


def _choose_category(lib: Library, default: str = "") -> str:
    for i, name in enumerate(lib.categories, 1):
        console.print(f"  [cyan]{i:2}[/]. {escape(name)}")
    raw = _ask("Category (number or name)", default)
    if raw.isdigit() and 1 <= int(raw) <= len(lib.categories):
        return lib.categories[int(raw) - 1]
    return raw


def add_book_menu() -> None:
    lib = LibraryManager.get_instance()
    data = {
        "title": _ask("Title"),
        "author": _ask("Author"),
        "isbn": _ask("ISBN"),
    }
    warning = lib.check_isbn(data["isbn"])
    if warning:
        console.print(f"[yellow]⚠️ {escape(warning)}[/]")
    data["category"] = _choose_category(lib)
    data["publisher"] = _ask("Publisher")
    data["year"] = _ask_int("Year", datetime.now().year)
    data["pages"] = _ask_int("Pages", 0)
    data["copies"] = _ask_int("Copies", 1)
    data["description"] = _ask("Description")
    data["location"] = _ask("Shelf location")
    book = lib.add_book(data)
    _success(f"Added [bold]{escape(book.title)}[/] with id {book.id}")


def _book_panel(book: Book, title: str) -> Panel:
    return Panel(
        f"[bold]Title:[/] {escape(book.title)}\n"
        f"[bold]Author:[/] {escape(book.author)}\n"
        f"[bold]ISBN:[/] {escape(book.isbn or '-')}\n"
        f"[bold]Category:[/] {escape(book.category)}\n"
        f"[bold]Copies:[/] {book.available_copies}/{book.copies} available",
        title=title,
        border_style="yellow",
    )


def edit_book_menu() -> None:
    lib = LibraryManager.get_instance()
    book = _pick(lib.resolve_book, _ask("Book id or title"))
    console.print(_book_panel(book, "📝 Editing"))
    console.print("[dim]Leave a field empty to keep its current value.[/]")
    patch = {
        "title": _ask("Title"),
        "author": _ask("Author"),
        "isbn": _ask("ISBN"),
        "category": _ask("Category"),
        "publisher": _ask("Publisher"),
        "year": _ask("Year"),
        "pages": _ask("Pages"),
        "copies": _ask("Copies"),
        "description": _ask("Description"),
        "location": _ask("Shelf location"),
    }
    lib.edit_book(book.id, patch)
    _success(f"Updated [bold]{escape(book.title)}[/]")


def delete_book_menu() -> None:
    lib = LibraryManager.get_instance()
    book = _pick(lib.resolve_book, _ask("Book id or title"))
    console.print(_book_panel(book, "📚 Book to delete"))
    lib.delete_book(book.id, confirm=lambda b: Confirm.ask("🗑️ Delete this book?", default=False))
    _success(f"Deleted [bold]{escape(book.title)}[/]")


def list_books_menu() -> None:
    print_list_result(LibraryManager.get_instance().list_books())


def add_member_menu() -> None:
    lib = LibraryManager.get_instance()
    member = lib.add_member({
        "name": _ask("Name"),
        "email": _ask("Email"),
        "phone": _ask("Phone"),
        "address": _ask("Address"),
    })
    _success(f"Registered [bold]{escape(member.name)}[/] with id {member.id}")


def list_members_menu() -> None:
    print_members_result(LibraryManager.get_instance().list_members())


def _confirm_fines(member: Member) -> bool:
    return Confirm.ask(
        f"⚠️ {escape(member.name)} owes {format_currency(member.fines)}. Lend anyway?",
        default=False,
    )


def borrow_menu() -> None:
    lib = LibraryManager.get_instance()
    member = _pick(lib.resolve_member, _ask("Member id or name"))
    console.print(f"[dim]{escape(member.name)}: {len(member.borrowed_books)}/"
                  f"{lib.settings.max_books_per_user} books on loan[/]")
    book = _pick(lib.resolve_book, _ask("Book id or title"))
    txn = lib.borrow_book(member.id, book.id, confirm=_confirm_fines)
    _success(f"[bold]{escape(book.title)}[/] lent to {escape(member.name)}, due {format_date(txn.due_date)}")


def return_menu() -> None:
    lib = LibraryManager.get_instance()
    txn = _pick(lib.resolve_active_transaction, _ask("Transaction id or member name"))
    txn = lib.return_book(txn.id)
    _success(f"[bold]{escape(lib.book_title(txn.book_id))}[/] returned")
    if txn.fine:
        console.print(f"[bold red]Late fine:[/] {format_currency(txn.fine)}")


def search_menu() -> None:
    lib = LibraryManager.get_instance()
    query = _ask("Search term")
    books = lib.search_books(query)
    if not books:
        console.print(f"[yellow]🔍 No books match '{escape(query)}'.[/]")
        return
    print_list_result(books)
    console.print(f"[dim]📊 {len(books)} results[/]")


def reports_menu() -> None:
    lib = LibraryManager.get_instance()
    choice = Prompt.ask("Report: 1 statistics, 2 books, 3 members, 4 overdue", choices=["1", "2", "3", "4"], default="1")
    if choice == "1":
        print_stats_result(lib.get_statistics())
        table = Table(title="Top categories", header_style="bold cyan")
        table.add_column("Category")
        table.add_column("Books", justify="right")
        for category, count in lib.category_counts():
            table.add_row(escape(category), str(count))
        console.print(table)
    elif choice == "2":
        list_books_menu()
    elif choice == "3":
        list_members_menu()
    else:
        overdue_menu()


def import_menu() -> None:
    books, skipped = LibraryManager.get_instance().import_books(_ask("CSV file path"))
    _success(f"Imported {len(books)} books")
    if skipped:
        console.print(f"[yellow]{skipped} malformed rows skipped[/]")


def export_menu() -> None:
    path = _csv_path(_ask("File name", _csv_path(None)))
    count = LibraryManager.get_instance().export_books(path)
    _success(f"Exported {count} books to {escape(path)}")


def reserve_menu() -> None:
    lib = LibraryManager.get_instance()
    member = _pick(lib.resolve_member, _ask("Member id or name"))
    book = _pick(lib.resolve_book, _ask("Book id or title"))
    reservation = lib.reserve_book(member.id, book.id)
    _success(f"Reservation {reservation.id} created for [bold]{escape(book.title)}[/]")


def reservations_menu() -> None:
    lib = LibraryManager.get_instance()
    active = lib.active_reservations()
    if not active:
        console.print("[yellow]No active reservations.[/]")
        return
    table = Table(title="📌 Reservations", show_lines=True, header_style="bold cyan")
    table.add_column("ID", style="magenta")
    table.add_column("Member")
    table.add_column("Book")
    table.add_column("Reserved")
    for r in active:
        table.add_row(r.id, escape(lib.member_name(r.member_id)), escape(lib.book_title(r.book_id)),
                      format_date(r.reservation_date))
    console.print(table)
    reservation_id = _ask("Reservation id to cancel (empty to go back)")
    if reservation_id:
        lib.cancel_reservation(reservation_id)
        _success(f"Reservation {reservation_id.upper()} cancelled")


def edit_member_menu() -> None:
    lib = LibraryManager.get_instance()
    member = _pick(lib.resolve_member, _ask("Member id or name"))
    console.print("[dim]Leave a field empty to keep its current value.[/]")
    patch = {
        "name": _ask("Name", member.name),
        "email": _ask("Email", member.email),
        "phone": _ask("Phone", member.phone),
        "address": _ask("Address", member.address),
    }
    lib.edit_member(member.id, patch)
    _success(f"Updated {escape(member.name)}")


def delete_member_menu() -> None:
    lib = LibraryManager.get_instance()
    member = _pick(lib.resolve_member, _ask("Member id or name"))
    lib.delete_member(member.id, confirm=lambda m: Confirm.ask(f"🗑️ Delete {escape(m.name)}?", default=False))
    _success(f"Deleted {escape(member.name)}")


def extend_menu() -> None:
    lib = LibraryManager.get_instance()
    txn = _pick(lib.resolve_active_transaction, _ask("Transaction id or member name"))
    txn = lib.extend_loan(txn.id)
    _success(f"New due date {format_date(txn.due_date)}")


def history_menu() -> None:
    lib = LibraryManager.get_instance()
    status = Prompt.ask("Show", choices=["all", "borrowed", "returned", "overdue"], default="all")
    print_transactions_result(lib.list_transactions(status), lib)


def advanced_search_menu() -> None:
    lib = LibraryManager.get_instance()
    filters = SearchFilters(
        title=_ask("Title contains"),
        author=_ask("Author contains"),
        category=_ask("Category contains"),
        year_from=_ask_int("Year from", 0),
        year_to=_ask_int("Year to", 9999),
        availability=Prompt.ask("Availability", choices=["all", "available", "borrowed"], default="all"),
    )
    books = lib.advanced_search(filters)
    if not books:
        console.print("[yellow]No books match these filters.[/]")
        return
    print_list_result(books)


def financial_menu() -> None:
    report = LibraryManager.get_instance().financial_report()
    console.print(Panel.fit(
        f"[bold]Outstanding fines:[/] {format_currency(report['total_outstanding'])}\n"
        f"[bold]Payments received:[/] {format_currency(report['total_payments'])}",
        title="💰 Finances",
        border_style="green",
    ))
    if report["monthly_payments"]:
        table = Table(title="Payments, last six months", header_style="bold cyan")
        table.add_column("Month")
        table.add_column("Amount", justify="right")
        for month, amount in report["monthly_payments"].items():
            table.add_row(month, format_currency(amount))
        console.print(table)


def fines_menu() -> None:
    lib = LibraryManager.get_instance()
    owing = lib.members_with_fines()
    if not owing:
        console.print("[green]No outstanding fines.[/]")
        return
    print_members_result(owing)
    choice = Prompt.ask("1 pay a fine, 2 overdue detail, 0 back", choices=["1", "2", "0"], default="0")
    if choice == "0":
        return
    member = _pick(lib.resolve_member, _ask("Member id or name"))
    if choice == "1":
        amount = _ask("Amount", str(member.fines))
        payment = lib.pay_fine(member.id, amount)
        _success(f"Received {format_currency(payment.amount)}; {format_currency(member.fines)} outstanding")
    else:
        _print_overdue_entries(lib.fine_detail(member.id), f"⏰ {escape(member.name)}")


def payments_menu() -> None:
    lib = LibraryManager.get_instance()
    payments = lib.payment_history()
    if not payments:
        console.print("[yellow]No payments recorded.[/]")
        return
    table = Table(title="🧾 Payments", show_lines=True, header_style="bold cyan")
    table.add_column("ID", style="magenta")
    table.add_column("Member")
    table.add_column("Date")
    table.add_column("Amount", justify="right")
    for p in payments:
        table.add_row(p.id, escape(lib.member_name(p.member_id)), format_date(p.date), format_currency(p.amount))
    console.print(table)


def upcoming_menu() -> None:
    lib = LibraryManager.get_instance()
    due = lib.upcoming_due()
    if not due:
        console.print(f"[green]Nothing due in the next {settings.upcoming_due_days} days.[/]")
        return
    print_transactions_result(due, lib)


def _print_overdue_entries(entries: List[Dict[str, Any]], title: str) -> None:
    if not entries:
        console.print("[green]No overdue loans.[/]")
        return
    table = Table(title=title, show_lines=True, header_style="bold red")
    table.add_column("Loan", style="magenta")
    table.add_column("Member")
    table.add_column("Book")
    table.add_column("Due")
    table.add_column("Days late", justify="right")
    table.add_column("Fine so far", justify="right")
    for entry in entries:
        table.add_row(
            entry["transaction"].id,
            escape(entry["member"]),
            escape(entry["book"]),
            format_date(entry["transaction"].due_date),
            str(entry["days_late"]),
            format_currency(entry["potential_fine"]),
        )
    console.print(table)


def overdue_menu() -> None:
    _print_overdue_entries(LibraryManager.get_instance().overdue_report(), "⏰ Overdue loans")


def settings_menu() -> None:
    lib = LibraryManager.get_instance()
    current = lib.settings.to_dict()
    table = Table.grid(padding=(0, 2))
    for name, value in current.items():
        table.add_row(f"[bold]{name}[/]", str(value))
    table.add_row("[bold]categories[/]", escape(", ".join(lib.categories)))
    console.print(Panel(table, title="⚙️ Settings", border_style="cyan"))

    name = Prompt.ask("Change", choices=list(current) + ["add_category", "remove_category", "back"], default="back")
    if name == "back":
        return
    if name == "add_category":
        lib.add_category(_ask("New category"))
    elif name == "remove_category":
        lib.remove_category(_ask("Category to remove"))
    else:
        lib.update_setting(name, _ask("New value", str(current[name])))
    _success("Settings updated")


def backup_menu() -> None:
    lib = LibraryManager.get_instance()
    choice = Prompt.ask("1 back up now, 2 list, 3 restore, 4 delete old, 0 back",
                        choices=["1", "2", "3", "4", "0"], default="0")
    if choice == "1":
        if lib.save():
            _success("Data saved and previous file backed up")
        else:
            console.print("[bold red]Backup failed; see the log for details.[/]")
    elif choice in ("2", "3"):
        backups = lib.list_backups()
        if not backups:
            console.print("[yellow]No backups found.[/]")
            return
        for i, b in enumerate(backups, 1):
            console.print(f"  [cyan]{i:2}[/]. {b['name']} [dim]{b['size']} bytes, {b['modified']:%Y-%m-%d %H:%M}[/]")
        if choice == "3":
            index = int(Prompt.ask("Backup to restore (0 to cancel)",
                                   choices=[str(i) for i in range(len(backups) + 1)], default="0"))
            if index == 0:
                return
            if not Confirm.ask("♻️ Replace all current data with this backup?", default=False):
                raise OperationCancelledError("Restore cancelled.")
            lib.restore_backup(backups[index - 1]["name"])
            _success(f"Restored {backups[index - 1]['name']}")
    elif choice == "4":
        deleted = lib.clean_old_backups(_ask_int("Delete backups older than how many days", 30))
        _success(f"Deleted {deleted} old backups")


def about_menu() -> None:
    lib = LibraryManager.get_instance()
    console.print(Panel.fit(
        f"[bold]{escape(APP_NAME)}[/] v{settings.app_version}\n"
        f"Data file: {escape(str(lib.store.data_file))}\n"
        f"Backups: {escape(str(lib.store.backup_dir))}\n"
        f"Loan period {lib.settings.max_borrow_days} days, "
        f"fine {format_currency(lib.settings.fine_per_day)} per day",
        title="ℹ️ About",
        border_style="blue",
    ))


MENU_ITEMS = [
    ("1", "Add book", "➕", add_book_menu),
    ("2", "Edit book", "📝", edit_book_menu),
    ("3", "Delete book", "🗑️", delete_book_menu),
    ("4", "List books", "📚", list_books_menu),
    ("5", "Add member", "👤", add_member_menu),
    ("6", "List members", "👥", list_members_menu),
    ("7", "Borrow book", "📤", borrow_menu),
    ("8", "Return book", "📥", return_menu),
    ("9", "Search books", "🔎", search_menu),
    ("10", "Reports", "📊", reports_menu),
    ("11", "Import CSV", "📄", import_menu),
    ("12", "Export CSV", "💾", export_menu),
    ("13", "Reserve book", "📌", reserve_menu),
    ("14", "Reservations", "📋", reservations_menu),
    ("15", "Edit member", "✏️", edit_member_menu),
    ("16", "Delete member", "❌", delete_member_menu),
    ("17", "Extend loan", "⏳", extend_menu),
    ("18", "Transaction history", "🔄", history_menu),
    ("19", "Advanced search", "🧭", advanced_search_menu),
    ("20", "Financial report", "💰", financial_menu),
    ("21", "Fines", "💸", fines_menu),
    ("22", "Payment history", "🧾", payments_menu),
    ("23", "Due soon", "📅", upcoming_menu),
    ("24", "Overdue loans", "⏰", overdue_menu),
    ("25", "Settings", "⚙️", settings_menu),
    ("26", "Backup & restore", "🛟", backup_menu),
    ("27", "About", "ℹ️", about_menu),
    ("0", "Exit", "🚪", None),
]
MENU_ACTIONS = {key: action for key, _, _, action in MENU_ITEMS if action}


def _status_line(lib: Library) -> str:
    stats = lib.get_statistics()
    line = (f"📚 {stats.get('total_books', 0)} books  👥 {stats.get('total_members', 0)} members  "
            f"📤 {stats.get('books_on_loan', 0)} on loan")
    overdue = stats.get("overdue_books", 0)
    if overdue:
        line += f"  [bold red]⏰ {overdue} overdue[/]"
    due_soon = len(lib.upcoming_due())
    if due_soon:
        line += f"  [yellow]📅 {due_soon} due within {settings.upcoming_due_days} days[/]"
    return line


def render_menu(lib: Library) -> None:
    table = Table.grid(padding=(0, 2))
    table.add_column(justify="right", style="bold cyan", width=4)
    table.add_column(justify="left", style="white")
    table.add_column(justify="right", style="bold cyan", width=4)
    table.add_column(justify="left", style="white")
    # Two columns keeps the long menu on one screen
    half = (len(MENU_ITEMS) + 1) // 2
    left, right = MENU_ITEMS[:half], MENU_ITEMS[half:]
    for i, (key, label, icon, _) in enumerate(left):
        row = [f"[reverse]{key}[/]", f"{icon} {label}"]
        if i < len(right):
            rkey, rlabel, ricon, _ = right[i]
            row += [f"[reverse]{rkey}[/]", f"{ricon} {rlabel}"]
        else:
            row += ["", ""]
        table.add_row(*row)

    console.print(Panel(
        table,
        title=f"{APP_NAME} v{settings.app_version}",
        subtitle=_status_line(lib),
        border_style="cyan",
        box=box.HEAVY,
        padding=(1, 2),
    ))


def handle_menu_choice(choice: str) -> bool:
    """Run one menu action. Returns False when the user chose to exit."""
    if choice == "0":
        return False
    action = MENU_ACTIONS.get(choice)
    if action is None:
        console.print("[yellow]Invalid choice, please try again.[/]")
        return True
    lib = LibraryManager.get_instance()
    lib.last_save_ok = None
    try:
        action()
    except OperationCancelledError as e:
        console.print(f"[blue]🚫 {escape(str(e))}[/]")
    except LibraryError as e:
        console.print(f"[bold red]Error:[/] {escape(str(e))}")
    if lib.last_save_ok is False:
        console.print("[bold yellow]⚠️ Changes could not be saved to disk; they are kept in memory.[/]")
    return True


def run_menu() -> int:
    """Interactive menu. Returns the process exit code."""
    lib = LibraryManager.get_instance()
    set_output_mode("rich")
    try:
        while True:
            render_menu(lib)
            choice = Prompt.ask("Choose an option", choices=[key for key, _, _, _ in MENU_ITEMS], default="4")
            if not handle_menu_choice(choice):
                break
            console.print()
    except (KeyboardInterrupt, EOFError):
        console.print()
    except Exception:
        logger.exception("Unexpected error, saving before exit")
        console.print("[bold red]Unexpected error; attempting to save your data.[/]")
        _emergency_save(lib)
        return 1

    if lib.settings.auto_save and not lib.save():
        console.print("[bold red]Final save failed.[/]")
    console.print("[green]Goodbye![/]")
    return 0


def _emergency_save(lib: Library) -> None:
    try:
        lib.save()
    except Exception:
        logger.exception("Emergency save failed")


if __name__ == "__main__":
    _configure_logging()
    if len(sys.argv) > 1:
        app()
    else:
        sys.exit(run_menu())
