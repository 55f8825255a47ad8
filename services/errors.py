"""Error taxonomy shared by the service layer and the HTTP routes.

Every error carries the HTTP status it maps to and a machine readable
category, so route handlers can render any of them the same way.
"""
from __future__ import annotations


class ServiceError(RuntimeError):
    """Base class for all service failures."""

    status_code = 500
    category = 'server_error'

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    default_message = 'Server error'

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self) -> dict:
        return {'message': self.message, 'error': self.category}


class ValidationError(ServiceError):
    status_code = 400
    category = 'bad_request'
    default_message = 'Invalid request payload'


class NotFoundError(ServiceError):
    status_code = 404
    category = 'not_found'

    def __init__(self, entity: str, message: str | None = None):
        self.entity = entity
        super().__init__(message or f'{entity.capitalize()} not found')


class ConflictError(ServiceError):
    """A state-machine precondition was violated."""

    status_code = 400
    category = 'conflict'
    default_message = 'Request conflicts with the current state'


class AlreadyBorrowedError(ConflictError):
    default_message = 'Book is already borrowed'


class NotBorrowedError(ConflictError):
    default_message = 'Book is not currently borrowed by you'


class BorrowedByOtherError(ConflictError):
    default_message = 'Book is not currently borrowed by you'


class AlreadyReturnedError(ConflictError):
    default_message = 'This book is already returned'


class DuplicateUserError(ConflictError):
    default_message = 'User already exists'


class InUseError(ConflictError):
    default_message = 'Resource is in use'


class ForbiddenError(ServiceError):
    status_code = 403
    category = 'forbidden'
    default_message = 'Access denied'


class StorageError(ServiceError):
    """Persistence layer failure (connectivity, constraint, driver)."""

    default_message = 'Storage failure, please try again later'
