import datetime

import pytest

from conftest import TODAY, fresh_copy, login
from models import BookCategory, BookCopy, BorrowRecord, Library
from services.borrowing import BorrowService, ConflictError


def test_borrow_requires_login(client, make_copy):
    resp = client.post('/api/borrows', json={'copy_id': make_copy()})
    assert resp.status_code == 401
    assert resp.get_json()['kind'] == 'unauthenticated'


def test_borrow_and_return_round_trip(client, make_user, make_copy):
    user_id = make_user('alice')
    copy_id = make_copy(total=2)
    login(client, user_id)

    resp = client.post('/api/borrows', json={'copy_id': copy_id})
    assert resp.status_code == 201
    loan = resp.get_json()
    assert loan['status'] == 'BORROWED'
    assert loan['user_id'] == user_id
    assert fresh_copy(copy_id).available_copies == 1

    returned_on = datetime.date.today()
    resp = client.put(f"/api/borrows/{loan['id']}/return")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['status'] == 'RETURNED'
    assert body['was_overdue'] is False
    assert body['return_date'] in {returned_on.isoformat(), datetime.date.today().isoformat()}

    copy = fresh_copy(copy_id)
    assert copy.available_copies == 2
    assert copy.version == 2


def test_borrow_rejects_bad_payload(client, make_user):
    login(client, make_user('alice'))
    resp = client.post('/api/borrows', json={'copy_id': 'abc'})
    assert resp.status_code == 400
    assert resp.get_json()['kind'] == 'invalid_request'


def test_errors_map_to_status_codes(client, make_user, make_copy):
    alice = make_user('alice')
    bob = make_user('bob')
    login(client, alice)

    resp = client.post('/api/borrows', json={'copy_id': 404})
    assert resp.status_code == 404
    assert resp.get_json()['kind'] == 'not_found'

    copy_id = make_copy(total=1)
    loan = client.post('/api/borrows', json={'copy_id': copy_id}).get_json()

    resp = client.post('/api/borrows', json={'copy_id': copy_id})
    assert resp.status_code == 400
    assert resp.get_json()['kind'] == 'unavailable'

    login(client, bob)
    resp = client.put(f"/api/borrows/{loan['id']}/return")
    assert resp.status_code == 403
    assert resp.get_json()['kind'] == 'not_borrowed_by_user'

    login(client, alice)
    assert client.put(f"/api/borrows/{loan['id']}/return").status_code == 200
    resp = client.put(f"/api/borrows/{loan['id']}/return")
    assert resp.status_code == 400
    assert resp.get_json()['kind'] == 'already_returned'


def test_limit_exceeded_payload(app, client, make_user, make_copy):
    app.config['BORROW_LIMITS'] = {'BOOK': 10, 'MAGAZINE': 1}
    login(client, make_user('alice'))
    client.post('/api/borrows', json={'copy_id': make_copy(category=BookCategory.MAGAZINE)})

    resp = client.post('/api/borrows', json={'copy_id': make_copy(category=BookCategory.MAGAZINE)})

    assert resp.status_code == 400
    body = resp.get_json()
    assert body['kind'] == 'limit_exceeded'
    assert body['limit'] == {
        'category': 'MAGAZINE',
        'current_count': 1,
        'max_limit': 1,
        'remaining': 0,
        'can_borrow': False,
    }


def test_category_without_configured_limit_is_a_json_error(app, client, make_user, make_copy):
    app.config['BORROW_LIMITS'] = {'BOOK': 3}
    login(client, make_user('alice'))
    copy_id = make_copy(category=BookCategory.MAGAZINE)

    resp = client.post('/api/borrows', json={'copy_id': copy_id})

    assert resp.status_code == 500
    assert resp.get_json()['kind'] == 'error'
    assert fresh_copy(copy_id).available_copies == 1
    assert BorrowRecord.query.count() == 0


def test_conflict_is_retried_then_reported(app, client, make_user, make_copy, monkeypatch):
    app.config['BORROW_MAX_RETRIES'] = 3
    calls = []

    def always_conflicts(self, *, user_id, copy_id):
        calls.append(copy_id)
        raise ConflictError('The copy was changed by another request, please try again.')

    monkeypatch.setattr(BorrowService, 'borrow', always_conflicts)
    login(client, make_user('alice'))

    resp = client.post('/api/borrows', json={'copy_id': make_copy()})

    assert resp.status_code == 409
    assert resp.get_json()['kind'] == 'conflict'
    assert len(calls) == 3


def test_current_history_and_limits(client, make_user, make_copy):
    login(client, make_user('alice'))
    kept = client.post('/api/borrows', json={'copy_id': make_copy()}).get_json()
    gone = client.post('/api/borrows', json={'copy_id': make_copy()}).get_json()
    client.put(f"/api/borrows/{gone['id']}/return")

    current = client.get('/api/borrows/current').get_json()
    assert [r['id'] for r in current] == [kept['id']]
    assert current[0]['is_overdue'] is False

    history = client.get('/api/borrows/history').get_json()
    assert {r['id'] for r in history} == {kept['id'], gone['id']}

    limits = client.get('/api/borrows/limits').get_json()
    assert limits['BOOK']['remaining'] == 9
    assert limits['MAGAZINE']['remaining'] == 5


def test_current_loans_use_configured_due_soon_window(app, client, make_user, make_loan):
    app.config['DUE_SOON_DAYS'] = 10
    user_id = make_user('alice')
    make_loan(user_id, datetime.date.today() + datetime.timedelta(days=7))
    login(client, user_id)

    current = client.get('/api/borrows/current').get_json()

    assert current[0]['is_due_soon'] is True

    app.config['DUE_SOON_DAYS'] = 5
    assert client.get('/api/borrows/current').get_json()[0]['is_due_soon'] is False


def test_due_reports_are_for_librarians(client, make_user, make_loan):
    reader = make_user('alice')
    librarian = make_user('librarian', is_admin=True)
    make_loan(reader, TODAY - datetime.timedelta(days=2))
    make_loan(reader, TODAY + datetime.timedelta(days=2))

    login(client, reader)
    assert client.get('/api/borrows/overdue').status_code == 403

    login(client, librarian)
    overdue = client.get(f'/api/borrows/overdue?date={TODAY.isoformat()}').get_json()
    due_soon = client.get(f'/api/borrows/due-soon?date={TODAY.isoformat()}').get_json()
    assert [n['username'] for n in overdue] == ['alice']
    assert overdue[0]['days_until_due'] == -2
    assert due_soon[0]['days_until_due'] == 2


@pytest.mark.parametrize('path', ['/api/borrows/overdue', '/api/borrows/due-soon'])
def test_due_reports_reject_malformed_date(client, make_user, path):
    login(client, make_user('librarian', is_admin=True))

    resp = client.get(f'{path}?date=garbage')

    assert resp.status_code == 400
    assert resp.get_json()['kind'] == 'invalid_request'


def test_init_db_command_seeds_once(app):
    runner = app.test_cli_runner()

    assert runner.invoke(args=['init-db', '--seed']).exit_code == 0
    assert runner.invoke(args=['init-db', '--seed']).exit_code == 0

    assert Library.query.count() == 3
    assert BookCopy.query.count() == 5
    copy = BookCopy.query.first()
    assert copy.available_copies == copy.total_copies
    assert copy.version == 0
