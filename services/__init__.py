"""Service layer package for encapsulating business logic."""

from .borrowing import BorrowService, BorrowServiceError  # noqa: F401
from .auth import admin_required, get_current_user, issue_token, jwt, login_required  # noqa: F401
