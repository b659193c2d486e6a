from __future__ import annotations

from datetime import datetime

from utils.timestamps import from_iso, to_iso


class Book:
    """A catalog entry with a pool of identical copies."""

    def __init__(self, id: str, title: str, author: str, isbn: str | None = None, category: str = "Other",
                 publisher: str = "", year: int | None = None, pages: int = 0,
                 copies: int = 1, available_copies: int | None = None,
                 description: str = "", location: str = "", added_date: datetime | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.isbn = (isbn or "").strip()
        self.category = category
        self.publisher = publisher
        self.year = year if year is not None else datetime.now().year
        self.pages = pages
        self.copies = copies
        self.available_copies = copies if available_copies is None else available_copies
        self.description = description
        self.location = location
        self.added_date = added_date or datetime.now()

    @property
    def available(self) -> bool:
        return self.available_copies > 0

    @property
    def on_loan(self) -> int:
        return self.copies - self.available_copies

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.id})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "category": self.category,
            "publisher": self.publisher,
            "year": self.year,
            "pages": self.pages,
            "copies": self.copies,
            "available_copies": self.available_copies,
            # Written for readers of the document; never read back
            "available": self.available,
            "description": self.description,
            "location": self.location,
            "added_date": to_iso(self.added_date),
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        copies = int(data.get("copies") or 1)
        available_copies = data.get("available_copies")
        if available_copies is None:
            available_copies = copies
        # Clamp to keep 0 <= available_copies <= copies for hand-edited documents
        available_copies = max(0, min(int(available_copies), copies))
        return Book(
            id=data["id"],
            title=data.get("title") or "Unknown",
            author=data.get("author") or "Unknown",
            isbn=data.get("isbn"),
            category=data.get("category") or "Other",
            publisher=data.get("publisher") or "",
            year=data.get("year"),
            pages=int(data.get("pages") or 0),
            copies=copies,
            available_copies=available_copies,
            description=data.get("description") or "",
            location=data.get("location") or "",
            added_date=from_iso(data.get("added_date")),
        )
