import datetime

import pytest

from app import create_app
from models import db, Book, BookCategory, BookCopy, BorrowRecord, CopyStatus, Library, LoanStatus, User
from services.borrowing import BorrowService

TODAY = datetime.date(2024, 3, 10)


@pytest.fixture
def app(tmp_path):
    # a file database so that worker threads get their own connections
    app = create_app('testing', {'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'library.db'}"})
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def service(app):
    return BorrowService(today=lambda: TODAY)


@pytest.fixture
def make_user(app):
    def _make(username, is_admin=False):
        user = User(username=username, full_name=username.title(), email=f'{username}@example.com', is_admin=is_admin)
        db.session.add(user)
        db.session.commit()
        return user.id

    return _make


@pytest.fixture
def make_library(app):
    def _make(name='Central Library', active=True):
        library = Library(name=name, address=f'{name} street', active=active)
        db.session.add(library)
        db.session.commit()
        return library.id

    return _make


@pytest.fixture
def make_book(app):
    counter = iter(range(1, 10_000))

    def _make(title=None, category=BookCategory.BOOK):
        book = Book(title=title or f'Title {next(counter)}', author='Some Author', publish_year=2020, category=category)
        db.session.add(book)
        db.session.commit()
        return book.id

    return _make


@pytest.fixture
def make_copy(app, make_book, make_library):
    def _make(book_id=None, library_id=None, total=1, available=None, status=CopyStatus.ACTIVE,
              category=BookCategory.BOOK):
        book_id = book_id or make_book(category=category)
        library_id = library_id or make_library()
        kwargs = {'total_copies': total}
        if available is not None:
            kwargs['available_copies'] = available
        copy = BookCopy(book_id=book_id, library_id=library_id, status=status, **kwargs)
        db.session.add(copy)
        db.session.commit()
        return copy.id

    return _make


@pytest.fixture
def make_loan(app, make_copy):
    """Insert a loan row directly, bypassing the borrow transaction."""

    def _make(user_id, due_date, status=LoanStatus.BORROWED, copy_id=None):
        copy = db.session.get(BookCopy, copy_id or make_copy(total=1))
        record = BorrowRecord(
            user_id=user_id,
            book_copy_id=copy.id,
            book_id=copy.book_id,
            library_id=copy.library_id,
            borrow_date=due_date - datetime.timedelta(days=30),
            due_date=due_date,
            return_date=due_date if status == LoanStatus.RETURNED else None,
            status=status,
        )
        db.session.add(record)
        db.session.commit()
        return record.id

    return _make


def fresh_copy(copy_id):
    return db.session.get(BookCopy, copy_id, populate_existing=True)


def login(client, user_id):
    with client.session_transaction() as sess:
        sess['user_id'] = user_id
