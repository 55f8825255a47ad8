import datetime
from datetime import timezone
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import declared_attr

# SQLAlchemy instance (initialized by app)
db = SQLAlchemy()


def _isoformat(value):
    return value.isoformat() if value else None


class User(db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(200), nullable=False)
    profile_picture = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(16), nullable=False, default='user')
    # denormalized; kept in step with borrowed_books by BorrowService
    borrowed_books_count = db.Column(db.Integer, nullable=False, default=0)
    last_borrowed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.datetime.now(timezone.utc))

    borrowed_books = db.relationship(
        'BorrowedBook',
        backref=db.backref('user', lazy=True),
        order_by='BorrowedBook.id',
        cascade='all, delete-orphan',
        lazy=True,
    )

    @property
    def is_admin(self):
        return self.role == 'admin'

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'profilePicture': self.profile_picture,
            'role': self.role,
            'borrowedBooksCount': self.borrowed_books_count or 0,
            'lastBorrowedAt': _isoformat(self.last_borrowed_at),
            'borrowedBooks': [entry.to_dict() for entry in self.borrowed_books],
        }


class BorrowedBook(db.Model):
    """One active loan of a general Book, seen from the borrower's side."""

    __tablename__ = 'borrowed_book'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    book_id = db.Column(db.Integer, db.ForeignKey('book.id'), nullable=False)
    borrow_date = db.Column(db.DateTime, nullable=False, default=lambda: datetime.datetime.now(timezone.utc))

    book = db.relationship('Book')

    def to_dict(self):
        return {
            'bookId': self.book_id,
            'borrowDate': _isoformat(self.borrow_date),
        }


class BookBase(db.Model):
    """Columns shared by both catalog variants."""

    __abstract__ = True

    DEFAULT_GENRE = None

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=True)
    author = db.Column(db.String(200), nullable=True)
    description = db.Column(db.Text, nullable=True)
    pages = db.Column(db.Integer, nullable=True)
    available = db.Column(db.Boolean, nullable=True)
    image = db.Column(db.String(255), nullable=True)
    pdf_url = db.Column(db.String(255), nullable=True)
    borrowed = db.Column(db.Boolean, nullable=False, default=False)
    borrowed_date = db.Column(db.DateTime, nullable=True)
    borrow_count = db.Column(db.Integer, nullable=False, default=0)

    @declared_attr
    def borrowed_by_id(cls):
        return db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)

    @declared_attr
    def genre(cls):
        return db.Column(db.String(40), nullable=False, default=cls.DEFAULT_GENRE)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'author': self.author,
            'description': self.description,
            'pages': self.pages,
            'available': self.available,
            'image': self.image,
            'pdfUrl': self.pdf_url,
            'genre': self.genre,
            'borrowed': bool(self.borrowed),
            'borrowedBy': self.borrowed_by_id,
            'borrowedDate': _isoformat(self.borrowed_date),
            'borrowCount': self.borrow_count or 0,
        }


class Book(BookBase):
    __tablename__ = 'book'
    DEFAULT_GENRE = 'fiction'


class NonFictionBook(BookBase):
    __tablename__ = 'nonfiction_book'
    DEFAULT_GENRE = 'Non-Fiction'


class BlogPost(db.Model):
    __tablename__ = 'blog_post'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=True)
    date = db.Column(db.String(40), nullable=True)
    author = db.Column(db.String(120), nullable=True)
    summary = db.Column(db.Text, nullable=True)
    image = db.Column(db.String(255), nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'date': self.date,
            'author': self.author,
            'summary': self.summary,
            'image': self.image,
        }


class ContactMessage(db.Model):
    __tablename__ = 'contact_message'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=True)
    email = db.Column(db.String(120), nullable=True)
    message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.datetime.now(timezone.utc))

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'message': self.message,
        }
