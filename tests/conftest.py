import pytest

from app import create_app
from models import db, Book, NonFictionBook, User
from services.auth import hash_password, issue_token


@pytest.fixture
def app(tmp_path):
    app = create_app('testing', {'UPLOAD_FOLDER': str(tmp_path / 'uploads')})
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make(username='alice', role='user', password='secret'):
        user = User(
            username=username,
            email=f'{username}@example.com',
            password_hash=hash_password(password),
            role=role,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_book(app):
    def _make(title='Dune', model=Book, **fields):
        if model is NonFictionBook:
            fields.setdefault('author', 'Anon')
            fields.setdefault('available', True)
        book = model(title=title, **fields)
        db.session.add(book)
        db.session.commit()
        return book

    return _make


@pytest.fixture
def auth_headers(app):
    def _headers(user):
        return {'Authorization': f'Bearer {issue_token(user)}'}

    return _headers
