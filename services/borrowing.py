"""Borrowing domain service logic."""
from __future__ import annotations

import datetime
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from models import db, Book, BorrowedBook, NonFictionBook, User
from services.errors import (
    AlreadyBorrowedError,
    AlreadyReturnedError,
    BorrowedByOtherError,
    NotBorrowedError,
    NotFoundError,
    ServiceError,
    StorageError,
)

# Kept as an alias so callers can catch every borrow/return failure at once.
BorrowServiceError = ServiceError


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True)
class BorrowResult:
    book: Book | NonFictionBook
    user: Optional[User] = None


class BorrowService:
    """Owns the borrow/return state machine of both catalog variants.

    General books follow the owner-tracked policy: the book records who holds
    it and the holder's ``borrowed_books`` mirrors the loan. Non-fiction books
    follow the anonymous-flag policy: only the ``borrowed`` flag flips and no
    user is involved.

    Each operation runs in one database transaction. The book row is changed
    with a conditional UPDATE, so of two concurrent borrowers only one can
    match the ``borrowed = false`` guard; the loser gets a conflict and the
    whole transaction, user bookkeeping included, is rolled back.
    """

    @contextmanager
    def _transaction(self):
        try:
            yield
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    def _run(self, action: str, operation):
        try:
            with self._transaction():
                return operation()
        except ServiceError:
            raise
        except SQLAlchemyError as exc:
            current_app.logger.exception('%s transaction failed: %s', action, exc)
            raise StorageError() from exc

    # -- conditional single-row updates -------------------------------------

    @staticmethod
    def claim(model, book_id: int, user_id: Optional[int], now: Optional[datetime.datetime]) -> bool:
        """Flip ``borrowed`` to true if nobody holds the book. Returns whether it did."""
        values = {
            'borrowed': True,
            'borrow_count': model.borrow_count + 1,
        }
        if user_id is not None:
            values['borrowed_by_id'] = user_id
            values['borrowed_date'] = now
        result = db.session.execute(
            update(model)
            .where(model.id == book_id, model.borrowed.is_(False))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def release(model, book_id: int, user_id: Optional[int]) -> bool:
        """Flip ``borrowed`` back to false; with a user id, only for that holder."""
        conditions = [model.id == book_id, model.borrowed.is_(True)]
        if user_id is not None:
            conditions.append(model.borrowed_by_id == user_id)
        result = db.session.execute(
            update(model)
            .where(*conditions)
            .values(borrowed=False, borrowed_by_id=None, borrowed_date=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # -- owner-tracked policy ---------------------------------------------

    def borrow(self, *, book_id: int, user_id: int) -> BorrowResult:
        def operation():
            book = db.session.get(Book, book_id)
            if book is None:
                raise NotFoundError('book')
            if book.borrowed:
                raise AlreadyBorrowedError()
            user = db.session.get(User, user_id) if user_id is not None else None
            if user is None:
                raise NotFoundError('user')

            now = _utcnow()
            if not self.claim(Book, book_id, user_id, now):
                raise AlreadyBorrowedError()
            user.borrowed_books.append(BorrowedBook(book_id=book_id, borrow_date=now))
            user.borrowed_books_count = (user.borrowed_books_count or 0) + 1
            user.last_borrowed_at = now
            return BorrowResult(book=book, user=user)

        result = self._run('Borrow', operation)
        db.session.refresh(result.book)
        current_app.logger.info('Book %s borrowed by user %s', book_id, user_id)
        return result

    def return_book(self, *, book_id: int, user_id: int) -> BorrowResult:
        def operation():
            book = db.session.get(Book, book_id)
            if book is None:
                raise NotFoundError('book')
            if not book.borrowed:
                raise NotBorrowedError()
            if book.borrowed_by_id != user_id:
                raise BorrowedByOtherError()
            user = db.session.get(User, user_id) if user_id is not None else None
            if user is None:
                raise NotFoundError('user')

            if not self.release(Book, book_id, user_id):
                raise NotBorrowedError()
            user.borrowed_books = [
                entry for entry in user.borrowed_books if entry.book_id != book_id
            ]
            user.borrowed_books_count = max((user.borrowed_books_count or 0) - 1, 0)
            return BorrowResult(book=book, user=user)

        result = self._run('Return', operation)
        db.session.refresh(result.book)
        current_app.logger.info('Book %s returned by user %s', book_id, user_id)
        return result

    # -- anonymous-flag policy --------------------------------------------

    def borrow_nonfiction(self, *, book_id: int) -> BorrowResult:
        def operation():
            book = db.session.get(NonFictionBook, book_id)
            if book is None:
                raise NotFoundError('book', 'Non-Fiction book not found')
            if book.borrowed or not self.claim(NonFictionBook, book_id, None, None):
                raise AlreadyBorrowedError('This book is already borrowed')
            return BorrowResult(book=book)

        result = self._run('Non-fiction borrow', operation)
        db.session.refresh(result.book)
        return result

    def return_nonfiction(self, *, book_id: int) -> BorrowResult:
        def operation():
            book = db.session.get(NonFictionBook, book_id)
            if book is None:
                raise NotFoundError('book', 'Non-Fiction book not found')
            if not book.borrowed or not self.release(NonFictionBook, book_id, None):
                raise AlreadyReturnedError()
            return BorrowResult(book=book)

        result = self._run('Non-fiction return', operation)
        db.session.refresh(result.book)
        return result
