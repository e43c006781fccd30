#!/usr/bin/env python3
"""
Create the library tables and optionally load demo data.
Usage:
  python db.py [--seed] [--db-uri sqlite:///library.db]
"""
import argparse
import sys

from app import create_app
from models import db, Book, BookCategory, BookCopy, CopyStatus, Library, User


def seed_demo_data():
    if Library.query.first():
        return False
    central = Library(name='Central Library', address='1 Main Street', active=True)
    east = Library(name='East Branch', address='20 Harbour Road', active=True)
    closed = Library(name='Old Town Branch', address='5 Mill Lane', active=False)
    books = [
        Book(title='The Pragmatic Programmer', author='Andrew Hunt', publish_year=1999,
             category=BookCategory.BOOK, isbn='978-0201616224', publisher='Addison-Wesley'),
        Book(title='Clean Code', author='Robert C. Martin', publish_year=2008,
             category=BookCategory.BOOK, isbn='978-0132350884', publisher='Prentice Hall'),
        Book(title='National Geographic 2024-05', author='National Geographic Society', publish_year=2024,
             category=BookCategory.MAGAZINE),
    ]
    copies = [
        BookCopy(book=books[0], library=central, total_copies=3),
        BookCopy(book=books[0], library=east, total_copies=1),
        BookCopy(book=books[1], library=central, total_copies=2),
        BookCopy(book=books[1], library=closed, total_copies=1),
        BookCopy(book=books[2], library=east, total_copies=5, status=CopyStatus.MAINTENANCE),
    ]
    users = [
        User(username='librarian', full_name='Head Librarian', email='librarian@library.local', is_admin=True),
        User(username='alice', full_name='Alice Chen', email='alice@example.com'),
        User(username='bob', full_name='Bob Lin', email='bob@example.com'),
    ]
    db.session.add_all([central, east, closed, *books, *copies, *users])
    db.session.commit()
    return True


def main(argv=None):
    parser = argparse.ArgumentParser(description='Initialize the library database')
    parser.add_argument('--seed', action='store_true', help='insert demo data into an empty database')
    parser.add_argument('--db-uri', help='optional DB URI to override app config')
    args = parser.parse_args(argv)

    config = {}
    if args.db_uri:
        config['SQLALCHEMY_DATABASE_URI'] = args.db_uri

    app = create_app(config)
    with app.app_context():
        db.create_all()
        print('Initialized database')
        if args.seed:
            if seed_demo_data():
                print('Inserted demo data')
            else:
                print('Database already has data, skipped seeding')
    return 0


if __name__ == '__main__':
    try:
        sys.exit(main())
    except Exception as e:
        print('Error:', e)
        sys.exit(1)
