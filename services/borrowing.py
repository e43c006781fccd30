"""Borrowing domain service logic."""
from __future__ import annotations

import calendar
import datetime
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Optional

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db, Book, BookCopy, BorrowRecord, LoanStatus, CopyStatus
from services.limits import LimitInfo, LimitPolicy


class BorrowServiceError(RuntimeError):
    """Base class for borrow/return failures."""

    status_code = 500
    kind = 'error'


class NotFoundError(BorrowServiceError):
    status_code = 404
    kind = 'not_found'


class UnavailableError(BorrowServiceError):
    status_code = 400
    kind = 'unavailable'


class AlreadyBorrowedError(BorrowServiceError):
    status_code = 400
    kind = 'already_borrowed'


class AlreadyReturnedError(BorrowServiceError):
    status_code = 400
    kind = 'already_returned'


class NotBorrowedByUserError(BorrowServiceError):
    status_code = 403
    kind = 'not_borrowed_by_user'


class LimitExceededError(BorrowServiceError):
    status_code = 400
    kind = 'limit_exceeded'

    def __init__(self, limit: LimitInfo):
        super().__init__(
            f'Borrow limit reached: {limit.current_count} {limit.category.value} loans open, '
            f'the maximum is {limit.max_limit}.'
        )
        self.limit = limit


class ConflictError(BorrowServiceError):
    """Another writer changed the inventory record first; retry the whole operation."""

    status_code = 409
    kind = 'conflict'
    retryable = True


def add_months(start: datetime.date, months: int) -> datetime.date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


@dataclass(frozen=True)
class LoanSummary:
    record_id: int
    user_id: int
    book_id: int
    book_copy_id: int
    title: str
    author: str
    category: str
    library_name: str
    borrow_date: datetime.date
    due_date: datetime.date
    return_date: Optional[datetime.date]
    status: LoanStatus
    was_overdue: bool = False

    @classmethod
    def from_record(cls, record: BorrowRecord, was_overdue: bool = False) -> 'LoanSummary':
        return cls(
            record_id=record.id,
            user_id=record.user_id,
            book_id=record.book_id,
            book_copy_id=record.book_copy_id,
            title=record.book.title,
            author=record.book.author,
            category=record.book.category.value,
            library_name=record.library.name,
            borrow_date=record.borrow_date,
            due_date=record.due_date,
            return_date=record.return_date,
            status=record.status,
            was_overdue=was_overdue,
        )

    def to_dict(self):
        return {
            'id': self.record_id,
            'user_id': self.user_id,
            'book_id': self.book_id,
            'book_copy_id': self.book_copy_id,
            'title': self.title,
            'author': self.author,
            'category': self.category,
            'library_name': self.library_name,
            'borrow_date': self.borrow_date.isoformat(),
            'due_date': self.due_date.isoformat(),
            'return_date': self.return_date.isoformat() if self.return_date else None,
            'status': self.status.value,
            'was_overdue': self.was_overdue,
        }


def retry_on_conflict(operation: Callable, attempts: int = 3, backoff: float = 0.0):
    """Run ``operation`` again from the top while it reports a conflict.

    Only :class:`ConflictError` is retried; the last one is re-raised once
    ``attempts`` runs have failed.
    """
    if attempts < 1:
        raise ValueError('attempts must be at least 1')
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ConflictError:
            if attempt == attempts:
                current_app.logger.warning('Giving up after %d conflicting attempts', attempts)
                raise
            current_app.logger.info('Inventory conflict on attempt %d/%d, retrying', attempt, attempts)
            if backoff:
                time.sleep(backoff * attempt)


class BorrowService:
    """Borrow and return transactions over the shared copy inventory.

    Inventory writes are compare-and-swap updates on ``BookCopy.version``; a
    lost race surfaces as :class:`ConflictError` and nothing is committed.
    """

    def __init__(
        self,
        limit_policy: Optional[LimitPolicy] = None,
        today: Optional[Callable[[], datetime.date]] = None,
    ):
        self._limit_policy = limit_policy
        self._today = today or datetime.date.today

    @property
    def limit_policy(self) -> LimitPolicy:
        if self._limit_policy is None:
            return LimitPolicy.from_config(current_app.config)
        return self._limit_policy

    @contextmanager
    def _transaction(self):
        try:
            yield
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    def _find_open_loan(self, user_id: int, book_id: int) -> Optional[BorrowRecord]:
        return BorrowRecord.query.filter_by(
            user_id=user_id,
            book_id=book_id,
            status=LoanStatus.BORROWED,
        ).first()

    def _count_open_loans(self, user_id: int, category) -> int:
        return (
            BorrowRecord.query.join(Book, Book.id == BorrowRecord.book_id)
            .filter(
                BorrowRecord.user_id == user_id,
                BorrowRecord.status == LoanStatus.BORROWED,
                Book.category == category,
            )
            .count()
        )

    def _adjust_available(self, copy: BookCopy, delta: int) -> None:
        read_version = copy.version
        new_available = min(copy.total_copies, copy.available_copies + delta)
        if new_available < 0:
            raise UnavailableError('No copies available.')
        if new_available != copy.available_copies + delta:
            current_app.logger.warning(
                'Copy %s already at total %s, not raising available count', copy.id, copy.total_copies
            )
        result = db.session.execute(
            update(BookCopy)
            .where(BookCopy.id == copy.id, BookCopy.version == read_version)
            .values(
                available_copies=new_available,
                version=read_version + 1,
                updated_at=datetime.datetime.now(datetime.timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError('The copy was changed by another request, please try again.')
        db.session.expire(copy, ['available_copies', 'version', 'updated_at'])

    def borrow(self, *, user_id: int, copy_id: int) -> LoanSummary:
        try:
            with self._transaction():
                copy = db.session.get(BookCopy, copy_id, populate_existing=True)
                if not copy:
                    raise NotFoundError(f'Book copy {copy_id} does not exist.')
                if copy.available_copies <= 0:
                    raise UnavailableError('No copies available.')
                if copy.status != CopyStatus.ACTIVE:
                    raise UnavailableError('This copy is inactive.')
                if not copy.library.active:
                    raise UnavailableError('This branch is inactive.')

                book = copy.book
                if self._find_open_loan(user_id, book.id):
                    raise AlreadyBorrowedError(
                        f'You already have a copy of "{book.title}" on loan; '
                        'only one copy of a title may be borrowed at a time.'
                    )

                try:
                    limit = self.limit_policy.evaluate(book.category, self._count_open_loans(user_id, book.category))
                except ValueError as exc:
                    current_app.logger.error('Borrow limits are misconfigured: %s', exc)
                    raise BorrowServiceError('Borrowing is not configured for this category.') from exc
                if not limit.can_borrow:
                    raise LimitExceededError(limit)

                today = self._today()
                months = current_app.config.get('LOAN_PERIOD_MONTHS', 1)
                record = BorrowRecord(
                    user_id=user_id,
                    book_copy=copy,
                    book=book,
                    library_id=copy.library_id,
                    borrow_date=today,
                    due_date=add_months(today, months),
                    status=LoanStatus.BORROWED,
                )
                db.session.add(record)
                db.session.flush()

                self._adjust_available(copy, -1)
                summary = LoanSummary.from_record(record)
            current_app.logger.info(
                'User %s borrowed copy %s (loan %s, due %s)', user_id, copy_id, summary.record_id, summary.due_date
            )
            return summary
        except BorrowServiceError:
            raise
        except IntegrityError as exc:
            current_app.logger.info('Open-loan constraint hit for user %s on copy %s: %s', user_id, copy_id, exc)
            raise ConflictError('A concurrent borrow of this title was committed first, please try again.') from exc
        except SQLAlchemyError as exc:
            current_app.logger.exception('Borrow transaction failed: %s', exc)
            raise BorrowServiceError('Borrow failed, please try again later.') from exc

    def return_loan(self, *, user_id: int, record_id: int) -> LoanSummary:
        try:
            with self._transaction():
                record = db.session.get(BorrowRecord, record_id, populate_existing=True)
                if not record:
                    raise NotFoundError(f'Loan {record_id} does not exist.')
                if record.user_id != user_id:
                    raise NotBorrowedByUserError('This loan does not belong to you.')
                if record.status == LoanStatus.RETURNED:
                    raise AlreadyReturnedError('This loan has already been returned.')

                copy = db.session.get(BookCopy, record.book_copy_id, populate_existing=True)

                today = self._today()
                record.status = LoanStatus.RETURNED
                record.return_date = today
                was_overdue = today > record.due_date
                db.session.flush()

                self._adjust_available(copy, 1)
                summary = LoanSummary.from_record(record, was_overdue=was_overdue)
            current_app.logger.info(
                'User %s returned loan %s (overdue=%s)', user_id, record_id, summary.was_overdue
            )
            return summary
        except BorrowServiceError:
            raise
        except SQLAlchemyError as exc:
            current_app.logger.exception('Return transaction failed: %s', exc)
            raise BorrowServiceError('Return failed, please try again later.') from exc

    def current_loans(self, user_id: int):
        return (
            BorrowRecord.query.filter_by(user_id=user_id, status=LoanStatus.BORROWED)
            .order_by(BorrowRecord.due_date, BorrowRecord.id)
            .all()
        )

    def loan_history(self, user_id: int):
        return (
            BorrowRecord.query.filter_by(user_id=user_id)
            .order_by(BorrowRecord.borrow_date.desc(), BorrowRecord.id.desc())
            .all()
        )

    def borrow_limits(self, user_id: int):
        policy = self.limit_policy
        return {
            category: policy.evaluate(category, self._count_open_loans(user_id, category))
            for category in policy.categories
        }
