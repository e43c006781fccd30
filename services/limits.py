"""Per-category borrow caps."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from models import BookCategory

DEFAULT_BORROW_LIMITS = {
    BookCategory.BOOK: 10,
    BookCategory.MAGAZINE: 5,
}


@dataclass(frozen=True)
class LimitInfo:
    category: BookCategory
    current_count: int
    max_limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.max_limit - self.current_count)

    @property
    def can_borrow(self) -> bool:
        return self.remaining > 0

    def to_dict(self):
        return {
            'category': self.category.value,
            'current_count': self.current_count,
            'max_limit': self.max_limit,
            'remaining': self.remaining,
            'can_borrow': self.can_borrow,
        }


class LimitPolicy:
    """Maps a category to its cap and evaluates a borrower's open-loan count against it.

    Holds no state beyond the caps it was built with; counts are supplied by the
    caller on every evaluation.
    """

    def __init__(self, caps: Mapping | None = None):
        source = DEFAULT_BORROW_LIMITS if caps is None else caps
        self._caps = {BookCategory(key): int(value) for key, value in source.items()}
        for category, cap in self._caps.items():
            if cap < 0:
                raise ValueError(f'Borrow limit for {category.value} must not be negative.')

    @classmethod
    def from_config(cls, config: Mapping) -> 'LimitPolicy':
        return cls(config.get('BORROW_LIMITS') or DEFAULT_BORROW_LIMITS)

    @property
    def categories(self):
        return tuple(self._caps)

    def cap(self, category) -> int:
        try:
            return self._caps[BookCategory(category)]
        except (KeyError, ValueError) as exc:
            raise ValueError(f'No borrow limit configured for category {category!r}.') from exc

    def evaluate(self, category, current_count: int) -> LimitInfo:
        category = BookCategory(category)
        return LimitInfo(category=category, current_count=current_count, max_limit=self.cap(category))
