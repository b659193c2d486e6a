"""CSV import and export of the book catalog."""

import csv
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

IMPORT_FIELDS = [
    "title", "author", "isbn", "category", "publisher",
    "year", "pages", "copies", "description", "location",
]

EXPORT_FIELDS = [
    "id", "title", "author", "isbn", "category", "publisher",
    "year", "pages", "copies", "available_copies", "location", "description",
]

# Free-text columns are always quoted on export
QUOTED_FIELDS = {"title", "author", "publisher", "location", "description"}


def _to_int(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def read_books_csv(path: str) -> Tuple[List[Dict[str, object]], int]:
    """Parse a CSV file into book field dicts.

    Returns ``(rows, skipped)``. The header decides column order; rows whose
    column count differs from the header are skipped.
    """
    with open(path, "r", newline="", encoding="utf-8-sig") as f:
        lines = [line for line in f.read().splitlines() if line.strip()]

    if len(lines) < 2:
        raise ValueError("CSV file needs a header row and at least one data row.")

    reader = csv.reader(lines)
    headers = [h.strip().lower() for h in next(reader)]
    index = {name: headers.index(name) for name in IMPORT_FIELDS if name in headers}
    current_year = datetime.now().year

    rows: List[Dict[str, object]] = []
    skipped = 0
    for values in reader:
        if len(values) != len(headers):
            skipped += 1
            continue
        values = [v.strip() for v in values]

        def get(name: str) -> str:
            pos = index.get(name)
            return values[pos] if pos is not None else ""

        copies = _to_int(get("copies"))
        if not copies or copies < 1:
            copies = 1
        rows.append({
            "title": get("title") or "Unknown",
            "author": get("author") or "Unknown",
            "isbn": get("isbn"),
            "category": get("category") or "Other",
            "publisher": get("publisher"),
            "year": _to_int(get("year")) or current_year,
            "pages": max(_to_int(get("pages")) or 0, 0),
            "copies": copies,
            "description": get("description"),
            "location": get("location"),
        })

    logger.info(f"Read {len(rows)} rows from {path} ({skipped} skipped)")
    return rows, skipped


def _quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def _plain(value: str) -> str:
    if any(ch in value for ch in (",", '"', "\n", "\r")):
        return _quote(value)
    return value


def format_book_row(book: Dict[str, object]) -> str:
    cells = []
    for field in EXPORT_FIELDS:
        value = book.get(field)
        text = "" if value is None else str(value)
        cells.append(_quote(text) if field in QUOTED_FIELDS else _plain(text))
    return ",".join(cells)


def write_books_csv(path: str, books: Iterable[Dict[str, object]]) -> int:
    """Write book dicts (as produced by ``Book.to_dict``) and return the row count."""
    count = 0
    with open(path, "w", newline="", encoding="utf-8") as f:
        f.write(",".join(EXPORT_FIELDS) + "\n")
        for book in books:
            f.write(format_book_row(book) + "\n")
            count += 1
    logger.info(f"Wrote {count} books to {path}")
    return count
