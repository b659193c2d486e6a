import json
import logging
from datetime import datetime, timedelta

import pytest

from config import LedgerSettings
from exceptions import (
    AmbiguousMatchError,
    ConflictError,
    LimitExceededError,
    NotFoundError,
    OperationCancelledError,
    UnavailableError,
    ValidationError,
)
from library import Library, SearchFilters, resolve

NOW = datetime(2024, 3, 1, 10, 0)


def _book(lib, title="Dune", copies=1, **extra):
    data = {"title": title, "author": "Frank Herbert", "copies": copies}
    data.update(extra)
    return lib.add_book(data, now=NOW)


def _member(lib, name="Ann Lee"):
    return lib.add_member({"name": name, "email": f"{name.split()[0].lower()}@example.com"}, now=NOW)


def _assert_invariants(lib):
    for book in lib.books:
        assert 0 <= book.available_copies <= book.copies
        assert book.available == (book.available_copies > 0)
    for member in lib.members:
        assert len(member.borrowed_books) <= lib.settings.max_books_per_user
        assert member.fines >= 0


# ------------------------- Catalog ------------------------- #
def test_add_book_defaults(lib):
    book = lib.add_book({"title": "  Ulysses ", "author": ""}, now=NOW)

    assert book.title == "Ulysses"
    assert book.author == "Unknown"
    assert book.category == "Other"
    assert book.year == 2024
    assert book.copies == book.available_copies == 1
    assert len(book.id) == 8 and book.id == book.id.upper()
    assert lib.list_books() == [book]


def test_add_book_rejects_empty_title(lib):
    with pytest.raises(ValidationError):
        lib.add_book({"title": "   "}, now=NOW)
    assert lib.list_books() == []


def test_add_book_keeps_invalid_isbn_with_warning(lib, caplog):
    with caplog.at_level(logging.WARNING):
        book = _book(lib, isbn="12-34")
    assert book.isbn == "12-34"
    assert "does not look valid" in caplog.text
    assert Library.check_isbn("978-0-306-40615-7") is None


def test_category_is_matched_case_insensitively(lib):
    assert _book(lib, "A", category="science").category == "Science"
    assert _book(lib, "B", category="Cooking").category == "Other"


def test_edit_book_copies_respect_loans(lib):
    book = _book(lib, copies=3)
    member = _member(lib)
    lib.borrow_book(member.id, book.id, now=NOW)
    lib.borrow_book(member.id, book.id, now=NOW)

    with pytest.raises(ValidationError):
        lib.edit_book(book.id, {"copies": "1", "title": "Changed"})
    assert book.title == "Dune"
    assert book.copies == 3

    lib.edit_book(book.id, {"copies": "5", "title": "Dune Messiah"})
    assert book.title == "Dune Messiah"
    assert book.copies == 5
    assert book.available_copies == 3
    _assert_invariants(lib)


def test_delete_guard_when_no_copies_left(lib):
    book = _book(lib)
    member = _member(lib)
    lib.borrow_book(member.id, book.id, now=NOW)
    assert book.available is False

    with pytest.raises(ConflictError):
        lib.delete_book(book.id)
    assert book in lib.books


def test_delete_guard_with_partial_loan(lib):
    book = _book(lib, copies=2)
    lib.borrow_book(_member(lib).id, book.id, now=NOW)
    assert book.available is True

    with pytest.raises(ConflictError):
        lib.delete_book(book.id)


def test_delete_free_book_removes_it_from_search(lib):
    book = _book(lib, "Solaris")
    assert lib.search_books("solaris") == [book]

    lib.delete_book(book.id)

    assert lib.search_books("solaris") == []
    assert lib.get_book(book.id) is None


def test_delete_book_cancelled_by_confirmation(lib):
    book = _book(lib)
    with pytest.raises(OperationCancelledError):
        lib.delete_book(book.id, confirm=lambda b: False)
    assert book in lib.books


def test_search_matches_title_author_category_and_isbn(lib):
    dune = _book(lib, "Dune", category="Fiction", isbn="9780441013593")
    cosmos = lib.add_book({"title": "Cosmos", "author": "Carl Sagan", "category": "Science"}, now=NOW)

    assert lib.search_books("HERBERT") == [dune]
    assert lib.search_books("science") == [cosmos]
    assert lib.search_books("0441") == [dune]
    assert lib.search_books("") == []


def test_advanced_search_filters_are_conjunctive(lib):
    old = _book(lib, "Old Dune", year=1965, category="Fiction")
    new = _book(lib, "New Dune", year=2020, category="Fiction")
    lib.borrow_book(_member(lib).id, new.id, now=NOW)

    assert lib.advanced_search(SearchFilters(title="dune", year_from=1900, year_to=2000)) == [old]
    assert lib.advanced_search(SearchFilters(availability="borrowed")) == [new]
    assert lib.advanced_search(SearchFilters(category="fic", availability="available")) == [old]
    with pytest.raises(ValidationError):
        lib.advanced_search(SearchFilters(availability="lost"))


# ------------------------- Resolver ------------------------- #
def test_resolve_prefers_exact_id(lib):
    book = _book(lib, "Dune")
    _book(lib, "Dune Messiah")

    assert lib.resolve_book(book.id.lower()) is book
    with pytest.raises(AmbiguousMatchError) as excinfo:
        lib.resolve_book("dune")
    assert len(excinfo.value.candidates) == 2
    assert lib.resolve_book("messiah").title == "Dune Messiah"
    with pytest.raises(NotFoundError):
        lib.resolve_book("Foundation")


def test_resolve_rejects_empty_query():
    with pytest.raises(NotFoundError):
        resolve([], "  ", lambda r: r, lambda r: r, "book")


# ------------------------- Membership ------------------------- #
def test_add_and_edit_member(lib):
    member = _member(lib, "Ann Lee")
    assert member.fines == 0
    assert member.borrowed_books == []

    lib.edit_member("ann", {"phone": "555-0101", "email": ""})

    assert member.phone == "555-0101"
    assert member.email == "ann@example.com"
    with pytest.raises(ValidationError):
        lib.add_member({"name": ""})


def test_delete_member_guards(lib):
    member = _member(lib)
    book = _book(lib)
    lib.borrow_book(member.id, book.id, now=NOW)
    with pytest.raises(ConflictError):
        lib.delete_member(member.id)

    lib.return_book(lib.transactions[0].id, now=NOW)
    member.fines = 500
    with pytest.raises(ConflictError):
        lib.delete_member(member.id)

    member.fines = 0
    lib.delete_member(member.id)
    assert lib.list_members() == []


# ------------------------- Circulation ------------------------- #
def test_borrow_then_return_on_time(lib):
    book = _book(lib, copies=2)
    member = _member(lib)
    before = book.available_copies

    txn = lib.borrow_book(member.id, book.id, now=NOW)
    assert txn.due_date == NOW + timedelta(days=14)
    assert member.borrowed_books == [book.id]
    assert book.available_copies == before - 1

    returned = lib.return_book(txn.id, now=NOW + timedelta(days=14))

    assert returned.fine == 0
    assert returned.status == "returned"
    assert book.available_copies == before
    assert member.borrowed_books == []
    assert member.borrow_history == [txn.id]
    _assert_invariants(lib)


def test_late_return_charges_per_started_day(lib):
    book = _book(lib)
    member = _member(lib)
    txn = lib.borrow_book(member.id, book.id, now=NOW)

    lib.return_book(txn.id, now=txn.due_date + timedelta(days=3))

    assert txn.fine == 6000
    assert member.fines == 6000


def test_partial_late_day_rounds_up(lib):
    txn = lib.borrow_book(_member(lib).id, _book(lib).id, now=NOW)
    lib.return_book(txn.id, now=txn.due_date + timedelta(days=2, hours=1))
    assert txn.fine == 6000


def test_borrow_limit(lib):
    member = _member(lib)
    book = _book(lib, copies=10)
    for _ in range(5):
        lib.borrow_book(member.id, book.id, now=NOW)

    with pytest.raises(LimitExceededError):
        lib.borrow_book(member.id, book.id, now=NOW)
    assert len(member.borrowed_books) == 5
    assert len(lib.transactions) == 5
    _assert_invariants(lib)


def test_borrow_with_fines_needs_confirmation(lib, caplog):
    member = _member(lib)
    book = _book(lib)
    member.fines = 4000

    with pytest.raises(OperationCancelledError):
        lib.borrow_book(member.id, book.id, confirm=lambda m: False, now=NOW)
    assert lib.transactions == []
    assert book.available_copies == 1

    with caplog.at_level(logging.WARNING):
        lib.borrow_book(member.id, book.id, now=NOW)
    assert "outstanding fines" in caplog.text
    assert len(lib.transactions) == 1


def test_end_to_end_scenario(lib):
    b1 = _book(lib, "B1", copies=2)
    m1, m2, m3 = _member(lib, "Ann"), _member(lib, "Bob"), _member(lib, "Cid")

    t1 = lib.borrow_book(m1.id, b1.id, now=NOW)
    lib.borrow_book(m2.id, b1.id, now=NOW)
    assert b1.available_copies == 0
    assert b1.available is False

    with pytest.raises(UnavailableError):
        lib.borrow_book(m3.id, b1.id, now=NOW)
    assert m3.borrowed_books == []

    lib.return_book(t1.id, now=NOW + timedelta(days=1))
    assert b1.available_copies == 1
    assert b1.available is True
    _assert_invariants(lib)


def test_return_by_member_name_with_several_loans_is_ambiguous(lib):
    member = _member(lib, "Ann Lee")
    first = lib.borrow_book(member.id, _book(lib, "A").id, now=NOW)
    lib.borrow_book(member.id, _book(lib, "B").id, now=NOW)

    with pytest.raises(AmbiguousMatchError) as excinfo:
        lib.return_book("ann", now=NOW)
    assert {t.id for t in excinfo.value.candidates} == {t.id for t in lib.transactions}

    lib.return_book(first.id, now=NOW)
    remaining = lib.return_book("ann", now=NOW)
    assert remaining.id != first.id


def test_return_unknown_loan(lib):
    with pytest.raises(NotFoundError):
        lib.return_book("NOPE0000", now=NOW)


def test_overdue_query_is_idempotent(lib):
    member = _member(lib)
    lib.borrow_book(member.id, _book(lib, "A").id, now=NOW)
    lib.borrow_book(member.id, _book(lib, "B").id, now=NOW + timedelta(days=10))
    later = NOW + timedelta(days=20)

    first = lib.overdue_transactions(later)
    second = lib.overdue_transactions(later)

    assert first == second
    assert len(first) == 1
    report = lib.overdue_report(later)
    assert report[0]["days_late"] == 6
    assert report[0]["potential_fine"] == 12000
    assert lib.fine_detail(member.id, later) == report


def test_extend_loan(lib):
    member = _member(lib)
    book = _book(lib)
    txn = lib.borrow_book(member.id, book.id, now=NOW)
    original_due = txn.due_date

    lib.extend_loan(txn.id, now=NOW + timedelta(days=2))
    assert txn.due_date == original_due + timedelta(days=14)
    assert txn.extensions == 1

    with pytest.raises(ValidationError):
        lib.extend_loan(txn.id, now=txn.due_date + timedelta(days=1))


def test_extend_loan_blocked_by_reservation(lib):
    book = _book(lib)
    txn = lib.borrow_book(_member(lib, "Ann").id, book.id, now=NOW)
    lib.reserve_book(_member(lib, "Bob").id, book.id, now=NOW)

    with pytest.raises(ConflictError):
        lib.extend_loan(txn.id, now=NOW)


def test_list_transactions_and_upcoming_due(lib):
    member = _member(lib)
    t1 = lib.borrow_book(member.id, _book(lib, "A").id, now=NOW)
    t2 = lib.borrow_book(member.id, _book(lib, "B").id, now=NOW - timedelta(days=12))
    lib.return_book(t1.id, now=NOW)

    assert lib.list_transactions("returned") == [t1]
    assert lib.list_transactions("borrowed") == [t2]
    assert len(lib.list_transactions()) == 2
    assert lib.upcoming_due(now=NOW, days=3) == [t2]
    with pytest.raises(ValidationError):
        lib.list_transactions("lost")


# ------------------------- Fines ------------------------- #
def test_payment_bound(lib):
    member = _member(lib)
    member.fines = 6000

    with pytest.raises(ValidationError):
        lib.pay_fine(member.id, 6001, now=NOW)
    for bad in (0, -5, 10.5, "abc", True):
        with pytest.raises(ValidationError):
            lib.pay_fine(member.id, bad, now=NOW)
    assert member.fines == 6000
    assert lib.payments == []


def test_partial_and_full_payment(lib):
    member = _member(lib)
    member.fines = 6000

    first = lib.pay_fine(member.id, "1500", now=NOW)
    second = lib.pay_fine(member.id, 4500, now=NOW + timedelta(days=1))

    assert member.fines == 0
    assert first.amount == 1500
    assert lib.payment_history() == [second, first]
    assert lib.members_with_fines() == []


def test_financial_report(lib):
    member = _member(lib)
    member.fines = 10000
    lib.pay_fine(member.id, 1000, now=datetime(2023, 6, 1))
    lib.pay_fine(member.id, 2000, now=datetime(2024, 1, 15))
    lib.pay_fine(member.id, 500, now=datetime(2024, 2, 20))

    report = lib.financial_report(now=NOW)

    assert report["total_outstanding"] == 6500
    assert report["total_payments"] == 3500
    assert report["monthly_payments"] == {"2024-01": 2000, "2024-02": 500}


# ------------------------- Reservations ------------------------- #
def test_reservation_rules(lib):
    book = _book(lib)
    ann, bob = _member(lib, "Ann"), _member(lib, "Bob")

    with pytest.raises(ConflictError):
        lib.reserve_book(bob.id, book.id, now=NOW)

    lib.borrow_book(ann.id, book.id, now=NOW)
    reservation = lib.reserve_book(bob.id, book.id, now=NOW)
    assert lib.active_reservations() == [reservation]
    with pytest.raises(ConflictError):
        lib.reserve_book(bob.id, book.id, now=NOW)

    lib.return_book(lib.transactions[0].id, now=NOW)
    lib.borrow_book(bob.id, book.id, now=NOW)
    assert reservation.status == "fulfilled"
    assert lib.active_reservations() == []


def test_cancel_reservation(lib):
    book = _book(lib)
    lib.borrow_book(_member(lib, "Ann").id, book.id, now=NOW)
    reservation = lib.reserve_book(_member(lib, "Bob").id, book.id, now=NOW)

    lib.cancel_reservation(reservation.id.lower())
    assert reservation.status == "cancelled"
    with pytest.raises(ConflictError):
        lib.cancel_reservation(reservation.id)
    with pytest.raises(NotFoundError):
        lib.cancel_reservation("MISSING0")


# ------------------------- Statistics & settings ------------------------- #
def test_stats_follow_every_mutation(lib):
    book = _book(lib)
    member = _member(lib)
    assert lib.get_statistics() == {
        "total_books": 1, "total_members": 1, "total_transactions": 0,
        "books_on_loan": 0, "overdue_books": 0,
    }

    txn = lib.borrow_book(member.id, book.id, now=NOW)
    assert lib.stats["books_on_loan"] == 1
    assert lib.stats["total_transactions"] == 1

    lib.return_book(txn.id, now=NOW)
    assert lib.stats["books_on_loan"] == 0


def test_category_counts(lib):
    _book(lib, "A", category="Science")
    _book(lib, "B", category="Science")
    _book(lib, "C", category="History")
    assert lib.category_counts() == [("Science", 2), ("History", 1)]


def test_update_setting(lib):
    lib.update_setting("max_borrow_days", "7")
    lib.update_setting("auto_save", "off")
    assert lib.settings.max_borrow_days == 7
    assert lib.settings.auto_save is False

    txn = lib.borrow_book(_member(lib).id, _book(lib).id, now=NOW)
    assert txn.due_date == NOW + timedelta(days=7)

    for name, value in (("fine_per_day", "-1"), ("max_books_per_user", "0"), ("colour", "red"), ("auto_save", "maybe")):
        with pytest.raises(ValidationError):
            lib.update_setting(name, value)


def test_settings_change_keeps_recorded_fines(lib):
    member = _member(lib)
    txn = lib.borrow_book(member.id, _book(lib).id, now=NOW)
    lib.return_book(txn.id, now=txn.due_date + timedelta(days=1))

    lib.update_setting("fine_per_day", 5000)
    assert txn.fine == 2000
    assert member.fines == 2000


def test_categories(lib):
    lib.add_category("Poetry")
    assert "Poetry" in lib.categories
    with pytest.raises(ValidationError):
        lib.add_category("poetry")
    lib.remove_category("Poetry")
    assert "Poetry" not in lib.categories
    with pytest.raises(NotFoundError):
        lib.remove_category("Poetry")


def test_remove_category_ignores_case(lib):
    lib.add_category("Poetry")
    lib.remove_category("  poetry ")
    assert "Poetry" not in lib.categories


# ------------------------- Persistence ------------------------- #
def test_persistence_round_trip(lib, tmp_path):
    book = _book(lib, copies=2, isbn="9780441013593")
    member = _member(lib)
    txn = lib.borrow_book(member.id, book.id, now=NOW)
    lib.update_setting("fine_per_day", 1000)

    reopened = Library(data_file=str(lib.store.data_file), backup_dir=str(lib.store.backup_dir))

    assert reopened.load_error is None
    assert [b.to_dict() for b in reopened.books] == [b.to_dict() for b in lib.books]
    assert reopened.get_member(member.id).borrowed_books == [book.id]
    assert reopened.transactions[0].due_date == txn.due_date
    assert reopened.settings.fine_per_day == 1000
    assert reopened.get_statistics() == lib.get_statistics()


def test_stored_settings_are_converted_to_numbers(tmp_path):
    data_file = tmp_path / "library_data.json"
    data_file.write_text(json.dumps({
        "books": [{"id": "B0000001", "title": "Dune", "author": "Frank Herbert"}],
        "members": [{"id": "M0000001", "name": "Ann"}],
        "settings": {"fine_per_day": "2000", "max_borrow_days": "14", "auto_save": "false"},
    }), encoding="utf-8")

    library = Library(data_file=str(data_file), backup_dir=str(tmp_path / "backups"))
    assert library.load_error is None
    assert library.settings.fine_per_day == 2000
    assert library.settings.auto_save is False

    txn = library.borrow_book("Ann", "Dune", now=NOW)
    library.return_book(txn.id, now=txn.due_date + timedelta(days=2))
    assert txn.fine == 4000
    assert library.get_member("M0000001").fines == 4000


def test_unreadable_stored_setting_is_reported(tmp_path):
    data_file = tmp_path / "library_data.json"
    data_file.write_text(json.dumps({"settings": {"fine_per_day": "a lot"}}), encoding="utf-8")

    library = Library(data_file=str(data_file), backup_dir=str(tmp_path / "backups"))

    assert library.load_error
    assert library.settings.fine_per_day == LedgerSettings().fine_per_day


def test_corrupt_data_file_starts_empty(tmp_path):
    data_file = tmp_path / "library_data.json"
    data_file.write_text("{not json", encoding="utf-8")

    library = Library(data_file=str(data_file), backup_dir=str(tmp_path / "backups"))

    assert library.load_error
    assert library.list_books() == []


def test_save_failure_keeps_changes_in_memory(lib, monkeypatch):
    def boom(document):
        raise OSError("disk full")

    monkeypatch.setattr(lib.store, "_write_atomic", boom)
    book = _book(lib)

    assert lib.last_save_ok is False
    assert lib.books == [book]


def test_auto_save_off_skips_writes(lib):
    lib.update_setting("auto_save", False)
    _book(lib)
    assert not lib.store.data_file.exists()


def test_restore_replaces_everything(lib):
    _book(lib, "A")
    lib.add_category("Poetry")
    _book(lib, "B")

    oldest = lib.list_backups()[-1]["name"]
    assert lib.restore_backup(oldest) is True

    assert [b.title for b in lib.books] == ["A"]
    assert "Poetry" not in lib.categories
    assert lib.stats["total_books"] == 1
