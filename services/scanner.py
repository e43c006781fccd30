"""Read-only queries for overdue and soon-due loans."""
from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import List, Optional

from models import db, Book, BorrowRecord, Library, LoanStatus, User


@dataclass(frozen=True)
class DueNotice:
    record_id: int
    user_id: int
    username: str
    email: Optional[str]
    title: str
    author: str
    library_name: str
    due_date: datetime.date
    days_until_due: int

    def to_dict(self):
        return {
            'record_id': self.record_id,
            'user_id': self.user_id,
            'username': self.username,
            'email': self.email,
            'title': self.title,
            'author': self.author,
            'library_name': self.library_name,
            'due_date': self.due_date.isoformat(),
            'days_until_due': self.days_until_due,
        }


@dataclass(frozen=True)
class DueReport:
    scanned_on: datetime.date
    overdue: List[DueNotice] = field(default_factory=list)
    due_soon: List[DueNotice] = field(default_factory=list)

    def to_dict(self):
        return {
            'scanned_on': self.scanned_on.isoformat(),
            'overdue': [n.to_dict() for n in self.overdue],
            'due_soon': [n.to_dict() for n in self.due_soon],
        }


class DueDateScanner:
    """Finds open loans past their due date or within ``due_soon_days`` of it.

    Plain SELECTs only: nothing is written and no row is locked, so a scan may
    run alongside borrows and returns and see a slightly stale picture.
    """

    def __init__(self, due_soon_days: int = 5):
        if due_soon_days < 0:
            raise ValueError('due_soon_days must not be negative')
        self.due_soon_days = due_soon_days

    def _open_loans(self):
        return (
            db.session.query(BorrowRecord, User, Book, Library)
            .join(User, User.id == BorrowRecord.user_id)
            .join(Book, Book.id == BorrowRecord.book_id)
            .join(Library, Library.id == BorrowRecord.library_id)
            .filter(BorrowRecord.status == LoanStatus.BORROWED)
        )

    @staticmethod
    def _to_notices(rows, today):
        return [
            DueNotice(
                record_id=record.id,
                user_id=user.id,
                username=user.username,
                email=user.email,
                title=book.title,
                author=book.author,
                library_name=library.name,
                due_date=record.due_date,
                days_until_due=(record.due_date - today).days,
            )
            for record, user, book, library in rows
        ]

    def overdue(self, today: Optional[datetime.date] = None) -> List[DueNotice]:
        today = today or datetime.date.today()
        rows = (
            self._open_loans()
            .filter(BorrowRecord.due_date < today)
            .order_by(BorrowRecord.due_date, BorrowRecord.id)
            .all()
        )
        return self._to_notices(rows, today)

    def due_soon(self, today: Optional[datetime.date] = None) -> List[DueNotice]:
        today = today or datetime.date.today()
        horizon = today + datetime.timedelta(days=self.due_soon_days)
        rows = (
            self._open_loans()
            .filter(BorrowRecord.due_date > today, BorrowRecord.due_date <= horizon)
            .order_by(BorrowRecord.due_date, BorrowRecord.id)
            .all()
        )
        return self._to_notices(rows, today)

    def scan(self, today: Optional[datetime.date] = None) -> DueReport:
        today = today or datetime.date.today()
        return DueReport(scanned_on=today, overdue=self.overdue(today), due_soon=self.due_soon(today))
