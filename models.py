import datetime
import enum
from datetime import timezone

from flask_sqlalchemy import SQLAlchemy

# SQLAlchemy instance (initialized by app)
db = SQLAlchemy()


def _utcnow():
    return datetime.datetime.now(timezone.utc)


class BookCategory(str, enum.Enum):
    BOOK = 'BOOK'
    MAGAZINE = 'MAGAZINE'


class CopyStatus(str, enum.Enum):
    ACTIVE = 'ACTIVE'
    INACTIVE = 'INACTIVE'
    MAINTENANCE = 'MAINTENANCE'


class LoanStatus(str, enum.Enum):
    BORROWED = 'BORROWED'
    RETURNED = 'RETURNED'


class Library(db.Model):
    __tablename__ = 'library'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    address = db.Column(db.String(255), nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)


class Book(db.Model):
    __tablename__ = 'book'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    author = db.Column(db.String(100), nullable=False)
    publish_year = db.Column(db.Integer, nullable=True)
    category = db.Column(db.Enum(BookCategory, name='book_category'), nullable=False, default=BookCategory.BOOK)
    isbn = db.Column(db.String(20), nullable=True)
    publisher = db.Column(db.String(100), nullable=True)


class User(db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    full_name = db.Column(db.String(120), nullable=True)
    email = db.Column(db.String(120), nullable=True)
    is_admin = db.Column(db.Boolean, default=False)


class BookCopy(db.Model):
    """Stock of one title at one branch.

    ``available_copies`` is only moved by the borrowing service, through a
    write guarded on ``version``.
    """

    __tablename__ = 'book_copy'
    __table_args__ = (
        db.UniqueConstraint('book_id', 'library_id', name='uq_book_copy_book_library'),
        db.CheckConstraint(
            'available_copies >= 0 AND available_copies <= total_copies',
            name='ck_book_copy_available_range',
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey('book.id'), nullable=False)
    library_id = db.Column(db.Integer, db.ForeignKey('library.id'), nullable=False)
    book = db.relationship('Book', backref=db.backref('copies', lazy=True))
    library = db.relationship('Library', backref=db.backref('copies', lazy=True))
    total_copies = db.Column(db.Integer, nullable=False, default=1)
    available_copies = db.Column(db.Integer, nullable=False)
    status = db.Column(db.Enum(CopyStatus, name='copy_status'), nullable=False, default=CopyStatus.ACTIVE)
    version = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow)

    def __init__(self, **kwargs):
        kwargs.setdefault('total_copies', 1)
        kwargs.setdefault('available_copies', kwargs['total_copies'])
        super().__init__(**kwargs)


class BorrowRecord(db.Model):
    """One borrow-to-return lifecycle of a copy by a borrower."""

    __tablename__ = 'borrow_record'
    __table_args__ = (
        db.Index('ix_borrow_record_user_status', 'user_id', 'status'),
        db.Index('ix_borrow_record_status_due', 'status', 'due_date'),
        # a borrower holds at most one open loan per title, whatever the branch
        db.Index(
            'uq_borrow_record_open_loan',
            'user_id',
            'book_id',
            unique=True,
            sqlite_where=db.text("status = 'BORROWED'"),
            postgresql_where=db.text("status = 'BORROWED'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    book_copy_id = db.Column(db.Integer, db.ForeignKey('book_copy.id', ondelete='RESTRICT'), nullable=False)
    library_id = db.Column(db.Integer, db.ForeignKey('library.id'), nullable=False)
    book_id = db.Column(db.Integer, db.ForeignKey('book.id'), nullable=False)
    user = db.relationship('User', backref=db.backref('borrow_records', lazy=True))
    book_copy = db.relationship('BookCopy', backref=db.backref('borrow_records', lazy=True))
    library = db.relationship('Library')
    book = db.relationship('Book')
    borrow_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    return_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.Enum(LoanStatus, name='loan_status'), nullable=False, default=LoanStatus.BORROWED)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    def is_overdue(self, today=None):
        today = today or datetime.date.today()
        return self.status == LoanStatus.BORROWED and today > self.due_date

    def is_due_soon(self, today=None, days=5):
        today = today or datetime.date.today()
        return self.status == LoanStatus.BORROWED and today < self.due_date <= today + datetime.timedelta(days=days)

    def days_until_due(self, today=None):
        if self.status != LoanStatus.BORROWED:
            return 0
        today = today or datetime.date.today()
        return (self.due_date - today).days

    def to_dict(self, today=None, due_soon_days=5):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'book_id': self.book_id,
            'book_copy_id': self.book_copy_id,
            'title': self.book.title if self.book else None,
            'author': self.book.author if self.book else None,
            'category': self.book.category.value if self.book else None,
            'library_name': self.library.name if self.library else None,
            'borrow_date': self.borrow_date.isoformat() if self.borrow_date else None,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'return_date': self.return_date.isoformat() if self.return_date else None,
            'status': self.status.value if self.status else None,
            'is_overdue': self.is_overdue(today),
            'is_due_soon': self.is_due_soon(today, due_soon_days),
            'days_until_due': self.days_until_due(today),
        }
