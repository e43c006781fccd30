"""Service layer package for encapsulating business logic."""

from .borrowing import (  # noqa: F401
    AlreadyBorrowedError,
    AlreadyReturnedError,
    BorrowService,
    BorrowServiceError,
    ConflictError,
    LimitExceededError,
    LoanSummary,
    NotBorrowedByUserError,
    NotFoundError,
    UnavailableError,
    retry_on_conflict,
)
from .limits import LimitInfo, LimitPolicy  # noqa: F401
from .scanner import DueDateScanner, DueNotice, DueReport  # noqa: F401
from .auth import login_required, admin_required, get_current_user  # noqa: F401
