"""Aggregate statistics for the admin dashboard."""
from __future__ import annotations

from typing import Iterable

from models import Book, NonFictionBook, User

TOP_BOOKS_LIMIT = 5


def compute_statistics(books: Iterable[Book], users: Iterable[User], nonfiction_books: Iterable[NonFictionBook] = ()) -> dict:
    """Compute the dashboard figures from a snapshot of records.

    Pure over its inputs: ``books`` is the general catalog, ``users`` every
    account. The most popular books are ranked by ``borrow_count`` with ties
    broken by id.
    """
    books = list(books)
    ranked = sorted(books, key=lambda b: (-(b.borrow_count or 0), b.id or 0))
    return {
        'userCount': sum(1 for _ in users),
        'totalBooks': len(books),
        'borrowedBooks': sum(1 for b in books if b.borrowed),
        'totalNonFictionBooks': sum(1 for _ in nonfiction_books),
        'mostPopularBooks': [b.to_dict() for b in ranked[:TOP_BOOKS_LIMIT]],
    }


def collect_statistics() -> dict:
    return compute_statistics(Book.query.all(), User.query.all(), NonFictionBook.query.all())
