"""Circulation records: loans, fine payments and reservations.

Records reference books and members by id only. Names shown to the user are
looked up on the ledger when needed, so renaming a member or a book never
leaves stale copies behind in old records.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from utils.timestamps import from_iso, to_iso

STATUS_BORROWED = "borrowed"
STATUS_RETURNED = "returned"

RESERVATION_ACTIVE = "active"
RESERVATION_FULFILLED = "fulfilled"
RESERVATION_CANCELLED = "cancelled"

ONE_DAY = timedelta(days=1)


def days_between(start: datetime, end: datetime) -> int:
    """Whole days between two instants, partial days rounded up."""
    return math.ceil(abs(end - start) / ONE_DAY)


@dataclass
class Transaction:
    """A single loan, from borrow to return."""

    id: str
    member_id: str
    book_id: str
    borrow_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None
    status: str = STATUS_BORROWED
    fine: int = 0
    extensions: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_BORROWED

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now()
        return self.is_active and self.due_date < now

    def days_late(self, when: Optional[datetime] = None) -> int:
        when = when or datetime.now()
        if when <= self.due_date:
            return 0
        return days_between(self.due_date, when)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "book_id": self.book_id,
            "borrow_date": to_iso(self.borrow_date),
            "due_date": to_iso(self.due_date),
            "return_date": to_iso(self.return_date),
            "status": self.status,
            "fine": self.fine,
            "extensions": self.extensions,
        }

    @staticmethod
    def from_dict(data: dict) -> "Transaction":
        return Transaction(
            id=data["id"],
            member_id=data["member_id"],
            book_id=data["book_id"],
            borrow_date=from_iso(data["borrow_date"]),
            due_date=from_iso(data["due_date"]),
            return_date=from_iso(data.get("return_date")),
            status=data.get("status") or STATUS_BORROWED,
            fine=int(data.get("fine") or 0),
            extensions=int(data.get("extensions") or 0),
        )


@dataclass
class Payment:
    id: str
    member_id: str
    amount: int
    date: datetime
    type: str = "fine_payment"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "amount": self.amount,
            "date": to_iso(self.date),
            "type": self.type,
        }

    @staticmethod
    def from_dict(data: dict) -> "Payment":
        return Payment(
            id=data["id"],
            member_id=data["member_id"],
            amount=int(data["amount"]),
            date=from_iso(data["date"]),
            type=data.get("type") or "fine_payment",
        )


@dataclass
class Reservation:
    id: str
    member_id: str
    book_id: str
    reservation_date: datetime
    status: str = RESERVATION_ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == RESERVATION_ACTIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "book_id": self.book_id,
            "reservation_date": to_iso(self.reservation_date),
            "status": self.status,
        }

    @staticmethod
    def from_dict(data: dict) -> "Reservation":
        return Reservation(
            id=data["id"],
            member_id=data["member_id"],
            book_id=data["book_id"],
            reservation_date=from_iso(data["reservation_date"]),
            status=data.get("status") or RESERVATION_ACTIVE,
        )
