from __future__ import annotations

from datetime import datetime

from utils.timestamps import from_iso, to_iso


class Member:
    """A registered library member."""

    def __init__(self, id: str, name: str, email: str = "", phone: str = "", address: str = "",
                 join_date: datetime | None = None, status: str = "active",
                 borrowed_books: list | None = None, fines: int = 0,
                 borrow_history: list | None = None) -> None:
        self.id = id
        self.name = name.strip()
        self.email = email
        self.phone = phone
        self.address = address
        self.join_date = join_date or datetime.now()
        self.status = status
        # Book ids, one entry per active loan
        self.borrowed_books = borrowed_books or []
        self.fines = fines
        # Ids of returned transactions
        self.borrow_history = borrow_history or []

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.name} ({self.id})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "join_date": to_iso(self.join_date),
            "status": self.status,
            "borrowed_books": list(self.borrowed_books),
            "fines": self.fines,
            "borrow_history": list(self.borrow_history),
        }

    @staticmethod
    def from_dict(data: dict) -> "Member":
        return Member(
            id=data["id"],
            name=data.get("name") or "",
            email=data.get("email") or "",
            phone=data.get("phone") or "",
            address=data.get("address") or "",
            join_date=from_iso(data.get("join_date")),
            status=data.get("status") or "active",
            borrowed_books=list(data.get("borrowed_books") or []),
            fines=max(0, int(data.get("fines") or 0)),
            borrow_history=list(data.get("borrow_history") or []),
        )
