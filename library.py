import calendar
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import csv_transfer
from book import Book
from config import LedgerSettings, settings
from database import DocumentStore
from exceptions import (
    AmbiguousMatchError,
    ConflictError,
    LibraryError,
    LimitExceededError,
    NotFoundError,
    OperationCancelledError,
    StorageError,
    UnavailableError,
    ValidationError,
)
from member import Member
from records import (
    RESERVATION_ACTIVE,
    RESERVATION_CANCELLED,
    RESERVATION_FULFILLED,
    STATUS_BORROWED,
    STATUS_RETURNED,
    Payment,
    Reservation,
    Transaction,
)
from utils.validators import ISBNValidator

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    "Fiction", "Non-Fiction", "Science", "Technology", "History",
    "Biography", "Education", "Religion", "Art", "Sports",
]
FALLBACK_CATEGORY = "Other"

AVAILABILITY_FILTERS = ("all", "available", "borrowed")
TRANSACTION_FILTERS = ("all", "borrowed", "returned", "overdue")


@dataclass
class SearchFilters:
    """Conjunctive filters for ``Library.advanced_search``; empty fields match everything."""

    title: str = ""
    author: str = ""
    category: str = ""
    year_from: int = 0
    year_to: int = 9999
    availability: str = "all"


def resolve(items: Iterable[Any], query: str, id_of: Callable[[Any], str],
            text_of: Callable[[Any], str], label: str) -> Any:
    """Find one record by exact id (case-insensitive) or by a unique substring of its text field."""
    q = (query or "").strip()
    if not q:
        raise NotFoundError(f"No {label} given.")
    items = list(items)
    wanted = q.upper()
    for item in items:
        if id_of(item).upper() == wanted:
            return item
    needle = q.lower()
    matches = [item for item in items if needle in (text_of(item) or "").lower()]
    if not matches:
        raise NotFoundError(f"No {label} matches '{q}'.")
    if len(matches) > 1:
        raise AmbiguousMatchError(f"'{q}' matches {len(matches)} {label}s.", matches)
    return matches[0]


def _int_field(value: Any, name: str, default: Optional[int]) -> Optional[int]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a whole number.")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a whole number.") from None


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _months_ago(now: datetime, months: int) -> datetime:
    year, month = now.year, now.month - months
    while month <= 0:
        month += 12
        year -= 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


class Library:
    """The circulation ledger: catalog, members, loans, fines and reservations.

    Every mutating operation validates before it changes anything, then
    recomputes the statistics and, with auto-save on, writes the whole
    document back through the ``DocumentStore``.
    """

    def __init__(self, data_file: Optional[str] = None, backup_dir: Optional[str] = None,
                 store: Optional[DocumentStore] = None) -> None:
        self.store = store or DocumentStore(
            data_file or settings.data_file,
            backup_dir or settings.backup_dir,
        )
        self.books: List[Book] = []
        self.members: List[Member] = []
        self.transactions: List[Transaction] = []
        self.payments: List[Payment] = []
        self.reservations: List[Reservation] = []
        self.categories: List[str] = list(DEFAULT_CATEGORIES)
        self.settings = LedgerSettings()
        self.stats: Dict[str, int] = {}
        self.last_save_ok: Optional[bool] = None
        self.load_error: Optional[str] = None

        try:
            self.load()
        except StorageError as e:
            # Keep the session usable; the unreadable file is backed up on the next save
            logger.error(f"Starting with an empty ledger: {e}")
            self.load_error = str(e)
            self.refresh_stats()

    # ------------------------- Persistence ------------------------- #
    def load(self) -> bool:
        """Load the stored document. Returns False on first run (no file yet)."""
        data = self.store.load()
        if data is None:
            logger.info(f"No document at {self.store.data_file}, starting a new ledger")
            self.refresh_stats()
            return False
        self._apply_document(data)
        logger.info(f"Loaded {len(self.books)} books and {len(self.members)} members")
        return True

    def to_document(self) -> Dict[str, Any]:
        return {
            "books": [b.to_dict() for b in self.books],
            "members": [m.to_dict() for m in self.members],
            "transactions": [t.to_dict() for t in self.transactions],
            "payments": [p.to_dict() for p in self.payments],
            "reservations": [r.to_dict() for r in self.reservations],
            "categories": list(self.categories),
            "settings": self.settings.to_dict(),
            "stats": dict(self.stats),
        }

    def _apply_document(self, data: Dict[str, Any]) -> None:
        # Parse everything first so a bad record leaves the current state untouched
        try:
            books = [Book.from_dict(item) for item in data.get("books") or []]
            members = [Member.from_dict(item) for item in data.get("members") or []]
            transactions = [Transaction.from_dict(item) for item in data.get("transactions") or []]
            payments = [Payment.from_dict(item) for item in data.get("payments") or []]
            reservations = [Reservation.from_dict(item) for item in data.get("reservations") or []]
            ledger_settings = LedgerSettings.from_dict(data.get("settings"))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise StorageError(f"Malformed ledger document: {e}") from e
        categories = data.get("categories")

        self.books = books
        self.members = members
        self.transactions = transactions
        self.payments = payments
        self.reservations = reservations
        self.categories = list(categories) if categories else list(DEFAULT_CATEGORIES)
        self.settings = ledger_settings
        self.refresh_stats()

    def save(self) -> bool:
        """Write the whole document (with backup rotation). Failures are logged, not raised."""
        self.last_save_ok = self.store.save(self.to_document(), self.settings.max_backup_files)
        return self.last_save_ok

    def _commit(self, now: Optional[datetime] = None) -> None:
        self.refresh_stats(now)
        if self.settings.auto_save:
            self.save()

    def _new_id(self, records: Iterable[Any]) -> str:
        taken = {r.id for r in records}
        while True:
            candidate = uuid.uuid4().hex[:8].upper()
            if candidate not in taken:
                return candidate

    # ------------------------- Lookups ------------------------- #
    def get_book(self, book_id: str) -> Optional[Book]:
        for book in self.books:
            if book.id == book_id:
                return book
        return None

    def get_member(self, member_id: str) -> Optional[Member]:
        for member in self.members:
            if member.id == member_id:
                return member
        return None

    def resolve_book(self, query: str) -> Book:
        return resolve(self.books, query, lambda b: b.id, lambda b: b.title, "book")

    def resolve_member(self, query: str) -> Member:
        return resolve(self.members, query, lambda m: m.id, lambda m: m.name, "member")

    def member_name(self, member_id: str) -> str:
        member = self.get_member(member_id)
        return member.name if member else member_id

    def book_title(self, book_id: str) -> str:
        book = self.get_book(book_id)
        return book.title if book else book_id

    def resolve_active_transaction(self, query: str) -> Transaction:
        active = [t for t in self.transactions if t.is_active]
        return resolve(active, query, lambda t: t.id, lambda t: self.member_name(t.member_id), "active loan")

    # ------------------------- Catalog ------------------------- #
    @staticmethod
    def check_isbn(isbn: Optional[str]) -> Optional[str]:
        """Return a warning for a malformed ISBN, or None. Never rejects the book."""
        if isbn and not ISBNValidator.is_valid_isbn(isbn):
            return f"ISBN '{isbn}' does not look valid (expected 10 or 13 digits); the book is kept anyway."
        return None

    def _canonical_category(self, raw: Any) -> str:
        name = _text(raw)
        if not name:
            return FALLBACK_CATEGORY
        for category in self.categories:
            if category.lower() == name.lower():
                return category
        if name.lower() != FALLBACK_CATEGORY.lower():
            logger.warning(f"Unknown category '{name}', filed under {FALLBACK_CATEGORY}")
        return FALLBACK_CATEGORY

    def _build_book(self, data: Dict[str, Any], book_id: str, now: datetime) -> Book:
        title = _text(data.get("title"))
        if not title:
            raise ValidationError("Title cannot be empty.")
        copies = _int_field(data.get("copies"), "Copies", 1)
        if copies < 1:
            copies = 1
        pages = _int_field(data.get("pages"), "Pages", 0)
        if pages < 0:
            raise ValidationError("Pages cannot be negative.")
        isbn = _text(data.get("isbn"))
        warning = self.check_isbn(isbn)
        if warning:
            logger.warning(warning)
        return Book(
            id=book_id,
            title=title,
            author=_text(data.get("author")) or "Unknown",
            isbn=isbn,
            category=self._canonical_category(data.get("category")),
            publisher=_text(data.get("publisher")),
            year=_int_field(data.get("year"), "Year", now.year),
            pages=pages,
            copies=copies,
            available_copies=copies,
            description=_text(data.get("description")),
            location=_text(data.get("location")),
            added_date=now,
        )

    def add_book(self, data: Dict[str, Any], now: Optional[datetime] = None) -> Book:
        now = now or datetime.now()
        book = self._build_book(data, self._new_id(self.books), now)
        self.books.append(book)
        logger.info(f"Book added: {book.id} '{book.title}' ({book.copies} copies)")
        self._commit(now)
        return book

    def list_books(self) -> List[Book]:
        return list(self.books)

    def edit_book(self, book_ref: str, patch: Dict[str, Any]) -> Book:
        """Apply the non-empty fields of ``patch`` to the book."""
        book = self.resolve_book(book_ref)
        changes: Dict[str, Any] = {}
        for field in ("title", "author", "isbn", "publisher", "description", "location"):
            value = _text(patch.get(field))
            if value:
                changes[field] = value
        if _text(patch.get("category")):
            changes["category"] = self._canonical_category(patch["category"])
        for field in ("year", "pages"):
            value = _int_field(patch.get(field), field.capitalize(), None)
            if value is not None:
                if value < 0:
                    raise ValidationError(f"{field.capitalize()} cannot be negative.")
                changes[field] = value
        copies = _int_field(patch.get("copies"), "Copies", None)
        if copies is not None:
            if copies < 1:
                raise ValidationError("A book needs at least one copy.")
            if copies < book.on_loan:
                raise ValidationError(f"{book.on_loan} copies are on loan; cannot reduce to {copies}.")

        if "isbn" in changes:
            warning = self.check_isbn(changes["isbn"])
            if warning:
                logger.warning(warning)
        if copies is not None:
            on_loan = book.on_loan
            book.copies = copies
            book.available_copies = copies - on_loan
        for field, value in changes.items():
            setattr(book, field, value)
        logger.info(f"Book {book.id} updated")
        self._commit()
        return book

    def delete_book(self, book_ref: str, confirm: Optional[Callable[[Book], bool]] = None) -> Book:
        book = self.resolve_book(book_ref)
        has_loans = any(t.is_active and t.book_id == book.id for t in self.transactions)
        if not book.available or has_loans:
            raise ConflictError(f"Cannot delete '{book.title}': it is currently on loan.")
        if confirm is not None and not confirm(book):
            raise OperationCancelledError("Deletion cancelled.")
        self.books = [b for b in self.books if b.id != book.id]
        for reservation in self.reservations:
            if reservation.is_active and reservation.book_id == book.id:
                reservation.status = RESERVATION_CANCELLED
        logger.info(f"Book deleted: {book.id} '{book.title}'")
        self._commit()
        return book

    def search_books(self, query: str) -> List[Book]:
        """Substring match over title, author, category and ISBN, in catalog order."""
        needle = (query or "").strip().lower()
        if not needle:
            return []
        return [
            b for b in self.books
            if needle in b.title.lower()
            or needle in b.author.lower()
            or needle in b.category.lower()
            or needle in (b.isbn or "").lower()
        ]

    def advanced_search(self, filters: SearchFilters) -> List[Book]:
        availability = (filters.availability or "all").strip().lower()
        if availability not in AVAILABILITY_FILTERS:
            raise ValidationError(f"Availability must be one of {', '.join(AVAILABILITY_FILTERS)}.")
        title = (filters.title or "").lower()
        author = (filters.author or "").lower()
        category = (filters.category or "").lower()

        results = []
        for book in self.books:
            if title and title not in book.title.lower():
                continue
            if author and author not in book.author.lower():
                continue
            if category and category not in book.category.lower():
                continue
            if book.year < filters.year_from or book.year > filters.year_to:
                continue
            if availability == "available" and not book.available:
                continue
            if availability == "borrowed" and book.available:
                continue
            results.append(book)
        return results

    # ------------------------- Membership ------------------------- #
    def add_member(self, data: Dict[str, Any], now: Optional[datetime] = None) -> Member:
        now = now or datetime.now()
        name = _text(data.get("name"))
        if not name:
            raise ValidationError("Name cannot be empty.")
        member = Member(
            id=self._new_id(self.members),
            name=name,
            email=_text(data.get("email")),
            phone=_text(data.get("phone")),
            address=_text(data.get("address")),
            join_date=now,
        )
        self.members.append(member)
        logger.info(f"Member added: {member.id} '{member.name}'")
        self._commit(now)
        return member

    def list_members(self) -> List[Member]:
        return list(self.members)

    def members_with_fines(self) -> List[Member]:
        return [m for m in self.members if m.fines > 0]

    def edit_member(self, member_ref: str, patch: Dict[str, Any]) -> Member:
        member = self.resolve_member(member_ref)
        changes = {}
        for field in ("name", "email", "phone", "address"):
            value = _text(patch.get(field))
            if value:
                changes[field] = value
        for field, value in changes.items():
            setattr(member, field, value)
        logger.info(f"Member {member.id} updated: {sorted(changes)}")
        self._commit()
        return member

    def delete_member(self, member_ref: str, confirm: Optional[Callable[[Member], bool]] = None) -> Member:
        member = self.resolve_member(member_ref)
        if member.borrowed_books:
            raise ConflictError(f"Cannot delete {member.name}: {len(member.borrowed_books)} books still on loan.")
        if member.fines > 0:
            raise ConflictError(f"Cannot delete {member.name}: outstanding fines of {member.fines}.")
        if confirm is not None and not confirm(member):
            raise OperationCancelledError("Deletion cancelled.")
        self.members = [m for m in self.members if m.id != member.id]
        for reservation in self.reservations:
            if reservation.is_active and reservation.member_id == member.id:
                reservation.status = RESERVATION_CANCELLED
        logger.info(f"Member deleted: {member.id} '{member.name}'")
        self._commit()
        return member

    # ------------------------- Circulation ------------------------- #
    def borrow_book(self, member_ref: str, book_ref: str,
                    confirm: Optional[Callable[[Member], bool]] = None,
                    now: Optional[datetime] = None) -> Transaction:
        """Lend one copy of a book.

        ``confirm`` is asked when the member has outstanding fines; a False
        answer cancels the loan. Without a callback the loan goes ahead.
        """
        now = now or datetime.now()
        member = self.resolve_member(member_ref)
        limit = self.settings.max_books_per_user
        if len(member.borrowed_books) >= limit:
            raise LimitExceededError(f"{member.name} already has the maximum of {limit} books.")
        if member.fines > 0:
            logger.warning(f"Member {member.id} borrowing with outstanding fines of {member.fines}")
            if confirm is not None and not confirm(member):
                raise OperationCancelledError("Borrowing cancelled.")
        book = self.resolve_book(book_ref)
        if book.available_copies <= 0:
            raise UnavailableError(f"'{book.title}' has no copies available.")

        transaction = Transaction(
            id=self._new_id(self.transactions),
            member_id=member.id,
            book_id=book.id,
            borrow_date=now,
            due_date=now + timedelta(days=self.settings.max_borrow_days),
        )
        self.transactions.append(transaction)
        member.borrowed_books.append(book.id)
        book.available_copies -= 1
        for reservation in self.reservations:
            if reservation.is_active and reservation.member_id == member.id and reservation.book_id == book.id:
                reservation.status = RESERVATION_FULFILLED
        logger.info(f"Loan {transaction.id}: '{book.title}' to {member.name}, due {transaction.due_date:%Y-%m-%d}")
        self._commit(now)
        return transaction

    def return_book(self, query: str, now: Optional[datetime] = None) -> Transaction:
        """Close one active loan and charge the late fine, if any.

        Raises ``AmbiguousMatchError`` when the query matches several loans;
        retry with the chosen transaction id.
        """
        now = now or datetime.now()
        transaction = self.resolve_active_transaction(query)
        fine = transaction.days_late(now) * self.settings.fine_per_day

        transaction.return_date = now
        transaction.status = STATUS_RETURNED
        transaction.fine = fine

        member = self.get_member(transaction.member_id)
        if member is not None:
            if transaction.book_id in member.borrowed_books:
                member.borrowed_books.remove(transaction.book_id)
            member.borrow_history.append(transaction.id)
            member.fines += fine
        book = self.get_book(transaction.book_id)
        if book is not None:
            book.available_copies = min(book.available_copies + 1, book.copies)

        if fine:
            logger.info(f"Loan {transaction.id} returned late, fine {fine}")
        else:
            logger.info(f"Loan {transaction.id} returned on time")
        self._commit(now)
        return transaction

    def extend_loan(self, query: str, now: Optional[datetime] = None) -> Transaction:
        now = now or datetime.now()
        transaction = self.resolve_active_transaction(query)
        if transaction.is_overdue(now):
            raise ValidationError("Overdue loans cannot be extended; return the book first.")
        waiting = [
            r for r in self.reservations
            if r.is_active and r.book_id == transaction.book_id and r.member_id != transaction.member_id
        ]
        if waiting:
            raise ConflictError(f"'{self.book_title(transaction.book_id)}' is reserved by another member.")
        transaction.due_date += timedelta(days=self.settings.max_borrow_days)
        transaction.extensions += 1
        logger.info(f"Loan {transaction.id} extended to {transaction.due_date:%Y-%m-%d}")
        self._commit(now)
        return transaction

    def overdue_transactions(self, now: Optional[datetime] = None) -> List[Transaction]:
        now = now or datetime.now()
        return [t for t in self.transactions if t.status == STATUS_BORROWED and t.due_date < now]

    def list_transactions(self, status_filter: str = "all", now: Optional[datetime] = None) -> List[Transaction]:
        status_filter = (status_filter or "all").strip().lower()
        if status_filter not in TRANSACTION_FILTERS:
            raise ValidationError(f"Filter must be one of {', '.join(TRANSACTION_FILTERS)}.")
        if status_filter == "overdue":
            return self.overdue_transactions(now)
        if status_filter == "all":
            return list(self.transactions)
        return [t for t in self.transactions if t.status == status_filter]

    def upcoming_due(self, now: Optional[datetime] = None, days: Optional[int] = None) -> List[Transaction]:
        now = now or datetime.now()
        horizon = now + timedelta(days=settings.upcoming_due_days if days is None else days)
        return [t for t in self.transactions if t.is_active and now <= t.due_date <= horizon]

    def _overdue_entry(self, transaction: Transaction, now: datetime) -> Dict[str, Any]:
        days_late = transaction.days_late(now)
        return {
            "transaction": transaction,
            "member": self.member_name(transaction.member_id),
            "book": self.book_title(transaction.book_id),
            "days_late": days_late,
            # Charged at today's rate; the real fine is fixed at return time
            "potential_fine": days_late * self.settings.fine_per_day,
        }

    def overdue_report(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or datetime.now()
        return [self._overdue_entry(t, now) for t in self.overdue_transactions(now)]

    def fine_detail(self, member_ref: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or datetime.now()
        member = self.resolve_member(member_ref)
        return [self._overdue_entry(t, now) for t in self.overdue_transactions(now) if t.member_id == member.id]

    # ------------------------- Fines ------------------------- #
    def pay_fine(self, member_ref: str, amount: Any, now: Optional[datetime] = None) -> Payment:
        now = now or datetime.now()
        member = self.resolve_member(member_ref)
        if isinstance(amount, bool):
            raise ValidationError("Payment amount must be a number.")
        try:
            value = float(amount)
        except (TypeError, ValueError):
            raise ValidationError("Payment amount must be a number.") from None
        if not value.is_integer():
            raise ValidationError("Payment amount must be a whole number of currency units.")
        value = int(value)
        if value <= 0 or value > member.fines:
            raise ValidationError(f"Payment must be between 1 and the outstanding fine of {member.fines}.")

        member.fines -= value
        payment = Payment(id=self._new_id(self.payments), member_id=member.id, amount=value, date=now)
        self.payments.append(payment)
        logger.info(f"Payment {payment.id}: {value} from {member.name}, {member.fines} outstanding")
        self._commit(now)
        return payment

    def payment_history(self) -> List[Payment]:
        return sorted(self.payments, key=lambda p: p.date, reverse=True)

    # ------------------------- Reservations ------------------------- #
    def reserve_book(self, member_ref: str, book_ref: str, now: Optional[datetime] = None) -> Reservation:
        now = now or datetime.now()
        member = self.resolve_member(member_ref)
        book = self.resolve_book(book_ref)
        if book.available_copies > 0:
            raise ConflictError(f"'{book.title}' is available; no reservation needed.")
        if any(r.is_active and r.member_id == member.id and r.book_id == book.id for r in self.reservations):
            raise ConflictError(f"{member.name} already has an active reservation for '{book.title}'.")
        reservation = Reservation(
            id=self._new_id(self.reservations),
            member_id=member.id,
            book_id=book.id,
            reservation_date=now,
        )
        self.reservations.append(reservation)
        logger.info(f"Reservation {reservation.id}: '{book.title}' for {member.name}")
        self._commit(now)
        return reservation

    def cancel_reservation(self, reservation_id: str) -> Reservation:
        wanted = (reservation_id or "").strip().upper()
        for reservation in self.reservations:
            if reservation.id.upper() == wanted:
                if reservation.status != RESERVATION_ACTIVE:
                    raise ConflictError(f"Reservation {reservation.id} is already {reservation.status}.")
                reservation.status = RESERVATION_CANCELLED
                logger.info(f"Reservation {reservation.id} cancelled")
                self._commit()
                return reservation
        raise NotFoundError(f"Reservation {reservation_id} not found.")

    def active_reservations(self) -> List[Reservation]:
        return [r for r in self.reservations if r.is_active]

    # ------------------------- Statistics & reports ------------------------- #
    def refresh_stats(self, now: Optional[datetime] = None) -> Dict[str, int]:
        self.stats = {
            "total_books": len(self.books),
            "total_members": len(self.members),
            "total_transactions": len(self.transactions),
            "books_on_loan": sum(1 for b in self.books if not b.available),
            "overdue_books": len(self.overdue_transactions(now)),
        }
        return self.stats

    def get_statistics(self) -> Dict[str, int]:
        return dict(self.stats)

    def category_counts(self, limit: int = 5) -> List[Tuple[str, int]]:
        counts: Dict[str, int] = {}
        for book in self.books:
            counts[book.category] = counts.get(book.category, 0) + 1
        ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
        return ranked[:limit]

    def financial_report(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now()
        since = _months_ago(now, 6)
        monthly: Dict[str, int] = {}
        for payment in sorted(self.payments, key=lambda p: p.date):
            if payment.date >= since:
                key = payment.date.strftime("%Y-%m")
                monthly[key] = monthly.get(key, 0) + payment.amount
        return {
            "total_outstanding": sum(m.fines for m in self.members),
            "total_payments": sum(p.amount for p in self.payments),
            "monthly_payments": monthly,
        }

    # ------------------------- Settings & categories ------------------------- #
    def update_setting(self, name: str, value: Any) -> LedgerSettings:
        """Change one runtime option. Recorded fines and due dates are not touched."""
        if name == "auto_save":
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered in ("true", "1", "yes", "on"):
                    value = True
                elif lowered in ("false", "0", "no", "off"):
                    value = False
            if not isinstance(value, bool):
                raise ValidationError("auto_save must be true or false.")
            self.settings.auto_save = value
        elif name in ("max_borrow_days", "max_books_per_user", "max_backup_files", "fine_per_day"):
            number = _int_field(value, name, None)
            if number is None:
                raise ValidationError(f"{name} needs a value.")
            minimum = 0 if name == "fine_per_day" else 1
            if number < minimum:
                raise ValidationError(f"{name} must be at least {minimum}.")
            setattr(self.settings, name, number)
        else:
            raise ValidationError(f"Unknown setting '{name}'.")
        logger.info(f"Setting {name} changed to {getattr(self.settings, name)}")
        self._commit()
        return self.settings

    def add_category(self, name: str) -> List[str]:
        name = _text(name)
        if not name:
            raise ValidationError("Category name cannot be empty.")
        if any(c.lower() == name.lower() for c in self.categories):
            raise ValidationError(f"Category '{name}' already exists.")
        self.categories.append(name)
        self._commit()
        return list(self.categories)

    def remove_category(self, name: str) -> List[str]:
        name = _text(name)
        match = next((c for c in self.categories if c.lower() == name.lower()), None)
        if match is None:
            raise NotFoundError(f"Category '{name}' not found.")
        # Books keep their category label
        self.categories.remove(match)
        self._commit()
        return list(self.categories)

    # ------------------------- Bulk import / export ------------------------- #
    def import_books(self, path: str, now: Optional[datetime] = None) -> Tuple[List[Book], int]:
        """Import books from CSV. Returns the new books and the number of skipped rows."""
        now = now or datetime.now()
        try:
            rows, skipped = csv_transfer.read_books_csv(path)
        except FileNotFoundError:
            raise NotFoundError(f"File {path} not found.") from None
        except ValueError as e:
            raise ValidationError(str(e)) from e
        except OSError as e:
            raise StorageError(f"Could not read {path}: {e}") from e

        new_books: List[Book] = []
        for number, row in enumerate(rows, 1):
            try:
                book = self._build_book(row, self._new_id(self.books + new_books), now)
            except ValidationError as e:
                logger.warning(f"Skipping CSV row {number} of {path}: {e}")
                skipped += 1
                continue
            new_books.append(book)
        self.books.extend(new_books)
        logger.info(f"Imported {len(new_books)} books from {path}, skipped {skipped} rows")
        self._commit(now)
        return new_books, skipped

    def export_books(self, path: str) -> int:
        if not self.books:
            raise NotFoundError("No books to export.")
        try:
            return csv_transfer.write_books_csv(path, (b.to_dict() for b in self.books))
        except OSError as e:
            raise StorageError(f"Could not write {path}: {e}") from e

    # ------------------------- Backups ------------------------- #
    def list_backups(self) -> List[Dict[str, Any]]:
        return self.store.list_backups()

    def clean_old_backups(self, days: int) -> int:
        days = _int_field(days, "Days", None)
        if days is None or days < 1:
            raise ValidationError("Days must be at least 1.")
        return self.store.clean_old_backups(days)

    def restore_backup(self, name: str) -> bool:
        """Replace the whole ledger with a backup, then save it as the current document."""
        data = self.store.read_backup(name)
        self._apply_document(data)
        logger.info(f"Ledger restored from {name}")
        return self.save()


__all__ = [
    "Library",
    "LibraryError",
    "SearchFilters",
    "resolve",
    "DEFAULT_CATEGORIES",
]
