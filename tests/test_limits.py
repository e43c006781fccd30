import pytest

from models import BookCategory
from services.limits import LimitPolicy


def test_default_caps():
    policy = LimitPolicy()
    assert policy.cap(BookCategory.BOOK) == 10
    assert policy.cap('MAGAZINE') == 5


@pytest.mark.parametrize('category, count, remaining, can_borrow', [
    ('BOOK', 0, 10, True),
    ('BOOK', 9, 1, True),
    ('BOOK', 10, 0, False),
    ('BOOK', 12, 0, False),
    ('MAGAZINE', 4, 1, True),
    ('MAGAZINE', 5, 0, False),
])
def test_remaining_slots(category, count, remaining, can_borrow):
    info = LimitPolicy().evaluate(category, count)
    assert info.remaining == remaining
    assert info.can_borrow is can_borrow
    assert info.current_count == count


def test_caps_come_from_config_mapping():
    policy = LimitPolicy.from_config({'BORROW_LIMITS': {'BOOK': 3, 'MAGAZINE': 1}})
    assert policy.evaluate(BookCategory.BOOK, 2).remaining == 1
    assert policy.evaluate(BookCategory.MAGAZINE, 1).can_borrow is False


def test_missing_config_falls_back_to_defaults():
    assert LimitPolicy.from_config({}).cap(BookCategory.BOOK) == 10


def test_unknown_category_is_rejected():
    policy = LimitPolicy({'BOOK': 10})
    with pytest.raises(ValueError):
        policy.cap(BookCategory.MAGAZINE)
    with pytest.raises(ValueError):
        policy.evaluate('COMIC', 0)


def test_negative_cap_is_rejected():
    with pytest.raises(ValueError):
        LimitPolicy({'BOOK': -1})


def test_to_dict():
    assert LimitPolicy().evaluate('MAGAZINE', 2).to_dict() == {
        'category': 'MAGAZINE',
        'current_count': 2,
        'max_limit': 5,
        'remaining': 3,
        'can_borrow': True,
    }
