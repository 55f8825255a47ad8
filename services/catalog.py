"""Catalog helpers: payload validation, pagination and title search."""
from __future__ import annotations

import math

from sqlalchemy import or_

from models import Book, NonFictionBook
from services.errors import ValidationError

# JSON key -> (model attribute, coercer)
BOOK_FIELDS = {
    'title': ('title', str),
    'author': ('author', str),
    'description': ('description', str),
    'pages': ('pages', int),
    'available': ('available', 'bool'),
    'image': ('image', str),
    'pdfUrl': ('pdf_url', str),
    'genre': ('genre', str),
}

_TRUE_VALUES = {'true', '1', 'yes', 'on'}
_FALSE_VALUES = {'false', '0', 'no', 'off', ''}


def _to_bool(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in _TRUE_VALUES | _FALSE_VALUES:
        return value.strip().lower() in _TRUE_VALUES
    raise ValueError(value)


def parse_book_payload(data, *, required=()) -> dict:
    """Coerce a JSON/form payload into model attributes.

    Unknown keys are dropped, which also keeps the borrow-state fields
    (``borrowed``, ``borrowedBy``, ``borrowedDate``, ``borrowCount``) out of
    reach of plain CRUD updates. ``None`` clears an optional field.
    """
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    missing = [key for key in required if data.get(key) in (None, '')]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    values = {}
    for key, (attr, coercer) in BOOK_FIELDS.items():
        if key not in data:
            continue
        raw = data[key]
        if raw is None:
            values[attr] = None
            continue
        try:
            if coercer == 'bool':
                values[attr] = _to_bool(raw)
            elif coercer is int:
                if isinstance(raw, bool):
                    raise ValueError(raw)
                values[attr] = int(raw)
            else:
                values[attr] = coercer(raw)
        except (TypeError, ValueError):
            raise ValidationError(f'Invalid value for {key}') from None
    if values.get('genre') is None:
        values.pop('genre', None)
    return values


def page_args(args, default_limit: int) -> tuple[int, int]:
    """Read ``page``/``limit`` query params; bad values fall back to defaults."""

    def _read(name, default):
        try:
            value = int(args.get(name, default))
        except (TypeError, ValueError):
            return default
        return value if value >= 1 else default

    return _read('page', 1), _read('limit', default_limit)


def paginate(query, page: int, limit: int):
    """Return (items, total, total_pages) for a SQLAlchemy query."""
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, total, math.ceil(total / limit)


def search_titles(text: str):
    """Books of both variants whose title contains any word of ``text``."""
    words = [word for word in (text or '').split() if word]
    if not words:
        return []
    results = []
    for model in (Book, NonFictionBook):
        condition = or_(*[model.title.icontains(word, autoescape=True) for word in words])
        results.extend(model.query.filter(condition).order_by(model.id).all())
    return results
