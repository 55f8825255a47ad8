from __future__ import annotations

import datetime
import os

from flask import (
    Flask,
    jsonify,
    request,
    send_from_directory,
    url_for,
)
from flask_jwt_extended import get_jwt
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from config import BaseConfig, config_by_name
from models import BlogPost, Book, ContactMessage, NonFictionBook, User, db
from services.auth import (
    admin_required,
    current_role,
    current_user_id,
    get_current_user,
    hash_password,
    issue_token,
    jwt,
    login_required,
    verify_password,
)
from services.borrowing import BorrowService, BorrowServiceError
from services.catalog import page_args, paginate, parse_book_payload, search_titles
from services.errors import (
    DuplicateUserError,
    ForbiddenError,
    InUseError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from services.statistics import collect_statistics
from services.uploads import save_pdf, save_profile_picture

RECENT_BORROW_WINDOW = datetime.timedelta(days=7)
NONFICTION_REQUIRED = ('title', 'author', 'available')


def _load_config(app: Flask, config_name: str | None, test_config: dict | None) -> None:
    resolved_name = config_name or os.environ.get('FLASK_CONFIG', 'development')
    config_cls = config_by_name.get(resolved_name, BaseConfig)
    app.config.from_object(config_cls)
    if test_config:
        app.config.update(test_config)


def _as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def create_app(config_name: str | None = None, test_config: dict | None = None):
    if isinstance(config_name, dict) and test_config is None:
        test_config = config_name
        config_name = None
    app = Flask(__name__)
    _load_config(app, config_name, test_config)
    db.init_app(app)
    jwt.init_app(app)
    borrow_service = BorrowService()

    def json_body() -> dict:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}

    def error_response(exc: ServiceError):
        return jsonify(exc.to_dict()), exc.status_code

    def book_payload(book) -> dict:
        data = book.to_dict()
        pdf_url = data.get('pdfUrl')
        if pdf_url and not pdf_url.startswith(('http://', 'https://', '/')):
            data['pdfUrl'] = url_for('uploaded_file', filename=pdf_url, _external=True)
        return data

    def find_user_by_name(username: str | None):
        if not isinstance(username, str) or not username.strip():
            return None
        return User.query.filter_by(username=username.strip().lower()).first()

    def create_user(data: dict, role: str = 'user') -> User:
        username = str(data.get('username') or '').strip().lower()
        email = str(data.get('email') or '').strip()
        password = data.get('password')
        if not username or not email or not password:
            raise ValidationError('Username, email and password are required')
        if find_user_by_name(username) or User.query.filter_by(email=email).first():
            raise DuplicateUserError()
        user = User(
            username=username,
            email=email,
            password_hash=hash_password(password),
            profile_picture=app.config['DEFAULT_PROFILE_PICTURE'],
            role=role,
        )
        db.session.add(user)
        db.session.commit()
        return user

    def apply_user_changes(user: User, data: dict, *, allow_role: bool) -> None:
        username = data.get('username')
        if username:
            username = str(username).strip().lower()
            other = find_user_by_name(username)
            if other is not None and other.id != user.id:
                raise DuplicateUserError('Username already taken')
            user.username = username
        email = data.get('email')
        if email:
            other = User.query.filter_by(email=email).first()
            if other is not None and other.id != user.id:
                raise DuplicateUserError('Email already registered')
            user.email = email
        if data.get('password'):
            user.password_hash = hash_password(data['password'])
        if data.get('profilePicture'):
            user.profile_picture = data['profilePicture']
        if 'role' in data:
            if not allow_role:
                raise ForbiddenError('Only administrators can change roles')
            if data['role'] not in ('user', 'admin'):
                raise ValidationError('Role must be "user" or "admin"')
            user.role = data['role']

    def delete_user_account(user_id: int):
        user = db.session.get(User, user_id)
        if not user:
            raise NotFoundError('user')
        holds_books = Book.query.filter_by(borrowed_by_id=user.id).count()
        if holds_books or user.borrowed_books:
            raise InUseError('User still holds borrowed books')
        db.session.delete(user)
        db.session.commit()
        app.logger.info('Deleted user %s', user_id)

    # -- shared catalog handlers ------------------------------------------

    def list_catalog(model, **filters):
        page, limit = page_args(request.args, app.config['PAGE_SIZE'])
        query = model.query.filter_by(**filters).order_by(model.id)
        books, total, total_pages = paginate(query, page, limit)
        return jsonify({
            'books': [book_payload(b) for b in books],
            'totalBooks': total,
            'totalPages': total_pages,
            'currentPage': page,
        })

    def get_catalog_book(model, book_id: int, not_found: str):
        book = db.session.get(model, book_id)
        if not book:
            raise NotFoundError('book', not_found)
        return book

    def create_catalog_book(model, data: dict, required=()):
        values = parse_book_payload(data, required=required)
        book = model(**values)
        db.session.add(book)
        db.session.commit()
        return book

    def update_catalog_book(model, book_id: int, not_found: str, required=()):
        data = json_body()
        book = get_catalog_book(model, book_id, not_found)
        values = parse_book_payload(data)
        cleared = [key for key in required if key in data and data[key] in (None, '')]
        if cleared:
            raise ValidationError(f"Fields cannot be empty: {', '.join(cleared)}")
        for attr, value in values.items():
            setattr(book, attr, value)
        db.session.commit()
        return jsonify(book_payload(book))

    def delete_catalog_book(model, book_id: int, not_found: str):
        book = get_catalog_book(model, book_id, not_found)
        if book.borrowed:
            raise InUseError('Book is currently borrowed')
        db.session.delete(book)
        db.session.commit()
        app.logger.info('Deleted %s %s', model.__tablename__, book_id)
        return jsonify({'message': 'Book deleted successfully'})

    # -- error rendering --------------------------------------------------

    @app.errorhandler(ServiceError)
    def handle_service_error(exc: ServiceError):
        db.session.rollback()
        return error_response(exc)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        category = (exc.name or 'error').lower().replace(' ', '_')
        return jsonify({'message': exc.description, 'error': category}), exc.code

    @app.errorhandler(SQLAlchemyError)
    def handle_storage_error(exc: SQLAlchemyError):
        app.logger.exception('Database operation failed: %s', exc)
        db.session.rollback()
        return jsonify({'message': 'Server error', 'error': 'server_error'}), 500

    @app.route('/')
    def index():
        return 'Backend is running!'

    # -- authentication ---------------------------------------------------

    @app.route('/api/auth/signup', methods=['POST'])
    def signup():
        user = create_user(json_body())
        return jsonify({'message': 'User created successfully', 'token': issue_token(user)}), 201

    @app.route('/api/auth/login', methods=['POST'])
    def login():
        data = json_body()
        user = find_user_by_name(data.get('username'))
        if not user:
            return jsonify({'message': 'User not found', 'error': 'unauthorized'}), 400
        if not verify_password(user, data.get('password')):
            app.logger.warning('Failed login for %s', user.username)
            return jsonify({'message': 'Incorrect password', 'error': 'unauthorized'}), 400
        return jsonify({'token': issue_token(user), 'role': user.role, 'message': 'Login successful'})

    @app.route('/login', methods=['POST'])
    def login_by_email():
        data = json_body()
        user = User.query.filter_by(email=data.get('email')).first() if data.get('email') else None
        if not user:
            return jsonify({'message': 'User not found', 'error': 'not_found'}), 404
        if not verify_password(user, data.get('password')):
            app.logger.warning('Failed login for %s', user.email)
            return jsonify({'message': 'Invalid credentials', 'error': 'unauthorized'}), 400
        return jsonify({'token': issue_token(user), 'role': user.role})

    @app.route('/api/protected-route')
    @login_required
    def protected_route():
        return jsonify({'message': 'This is a protected route', 'user': get_jwt()})

    # -- general catalog --------------------------------------------------

    @app.route('/api/books', methods=['GET'])
    def list_books():
        return list_catalog(Book)

    @app.route('/api/books', methods=['POST'])
    @admin_required
    def create_book():
        book = create_catalog_book(Book, json_body())
        return jsonify(book_payload(book)), 201

    @app.route('/api/books/<int:book_id>', methods=['GET'])
    def book_detail(book_id: int):
        return jsonify(book_payload(get_catalog_book(Book, book_id, 'Book not found')))

    @app.route('/api/books/<int:book_id>', methods=['PUT', 'PATCH'])
    @admin_required
    def update_book(book_id: int):
        return update_catalog_book(Book, book_id, 'Book not found')

    @app.route('/api/books/<int:book_id>', methods=['DELETE'])
    @admin_required
    def delete_book(book_id: int):
        return delete_catalog_book(Book, book_id, 'Book not found')

    @app.route('/api/books/<int:book_id>/borrow', methods=['PATCH'])
    @login_required
    def borrow_book(book_id: int):
        try:
            result = borrow_service.borrow(book_id=book_id, user_id=current_user_id())
        except BorrowServiceError as exc:
            return error_response(exc)
        return jsonify({'message': 'Book borrowed successfully', 'book': book_payload(result.book)})

    @app.route('/api/books/<int:book_id>/return', methods=['PATCH'])
    @login_required
    def return_book(book_id: int):
        try:
            result = borrow_service.return_book(book_id=book_id, user_id=current_user_id())
        except BorrowServiceError as exc:
            return error_response(exc)
        return jsonify({'message': 'Book returned successfully', 'book': book_payload(result.book)})

    # -- non-fiction catalog ----------------------------------------------

    @app.route('/api/nonfiction', methods=['GET'])
    def list_nonfiction():
        return list_catalog(NonFictionBook, genre=NonFictionBook.DEFAULT_GENRE)

    @app.route('/api/nonfiction', methods=['POST'])
    @admin_required
    def create_nonfiction():
        book = create_catalog_book(NonFictionBook, json_body(), required=NONFICTION_REQUIRED)
        return jsonify(book_payload(book)), 201

    @app.route('/api/nonfiction/<int:book_id>', methods=['GET'])
    def nonfiction_detail(book_id: int):
        return jsonify(book_payload(get_catalog_book(NonFictionBook, book_id, 'Non-Fiction book not found')))

    @app.route('/api/nonfiction/<int:book_id>', methods=['PUT', 'PATCH'])
    @admin_required
    def update_nonfiction(book_id: int):
        return update_catalog_book(NonFictionBook, book_id, 'Non-Fiction book not found', NONFICTION_REQUIRED)

    @app.route('/api/nonfiction/<int:book_id>', methods=['DELETE'])
    @admin_required
    def delete_nonfiction(book_id: int):
        return delete_catalog_book(NonFictionBook, book_id, 'Non-Fiction book not found')

    @app.route('/api/nonfiction/<int:book_id>/borrow', methods=['PATCH'])
    def borrow_nonfiction(book_id: int):
        try:
            result = borrow_service.borrow_nonfiction(book_id=book_id)
        except BorrowServiceError as exc:
            return error_response(exc)
        return jsonify({'message': 'Book borrowed successfully', 'book': book_payload(result.book)})

    @app.route('/api/nonfiction/<int:book_id>/return', methods=['PATCH'])
    def return_nonfiction(book_id: int):
        try:
            result = borrow_service.return_nonfiction(book_id=book_id)
        except BorrowServiceError as exc:
            return error_response(exc)
        return jsonify({'message': 'Book returned successfully', 'book': book_payload(result.book)})

    @app.route('/api/search')
    def search():
        query = (request.args.get('query') or '').strip()
        if not query:
            return jsonify({'message': 'Search query is required', 'error': 'bad_request'}), 400
        return jsonify([book_payload(b) for b in search_titles(query)])

    # -- uploads ----------------------------------------------------------

    @app.route('/uploads', methods=['POST'])
    @admin_required
    def upload_book_pdf():
        values = parse_book_payload(request.form.to_dict())
        filename = save_pdf(request.files.get('pdf'))
        values['pdf_url'] = filename
        try:
            book = Book(**values)
            db.session.add(book)
            db.session.commit()
        except SQLAlchemyError:
            os.remove(os.path.join(app.config['UPLOAD_FOLDER'], filename))
            raise
        return jsonify({'pdfUrl': url_for('uploaded_file', filename=filename, _external=True)})

    @app.route('/uploads/<path:filename>')
    def uploaded_file(filename: str):
        return send_from_directory(app.config['UPLOAD_FOLDER'], filename)

    # -- users ------------------------------------------------------------

    @app.route('/api/user')
    @login_required
    def user_summary():
        user = get_current_user()
        if not user:
            raise NotFoundError('user')
        borrowed = [entry.to_dict() for entry in user.borrowed_books]
        return jsonify({
            'username': user.username,
            'email': user.email,
            'profilePicture': user.profile_picture,
            'borrowedBooksCount': len(borrowed),
            'borrowedBooks': borrowed,
        })

    @app.route('/api/user/profile', methods=['GET'])
    @login_required
    def profile():
        user = get_current_user()
        if not user:
            raise NotFoundError('user')
        cutoff = datetime.datetime.now(datetime.timezone.utc) - RECENT_BORROW_WINDOW
        recent = [entry for entry in user.borrowed_books if _as_utc(entry.borrow_date) > cutoff]
        return jsonify({
            'username': user.username,
            'email': user.email,
            'profilePicture': user.profile_picture,
            'borrowedBooksCount': user.borrowed_books_count or 0,
            'recentlyBorrowed': bool(recent),
            'recentlyBorrowedBooks': [
                {
                    'bookId': entry.book_id,
                    'title': entry.book.title if entry.book else None,
                    'borrowDate': entry.to_dict()['borrowDate'],
                }
                for entry in recent
            ],
        })

    @app.route('/api/user/profile', methods=['PUT'])
    @login_required
    def edit_profile():
        user = get_current_user()
        if not user:
            raise NotFoundError('user')
        data = request.form.to_dict() if request.form or request.files else json_body()
        data.pop('profilePicture', None)
        apply_user_changes(user, data, allow_role=False)
        if 'profilePicture' in request.files:
            user.profile_picture = save_profile_picture(request.files['profilePicture'])
        db.session.commit()
        return jsonify({'message': 'Profile updated successfully', 'user': user.to_dict()})

    @app.route('/api/user/<int:user_id>', methods=['GET'])
    def user_detail(user_id: int):
        user = db.session.get(User, user_id)
        if not user:
            raise NotFoundError('user')
        return jsonify(user.to_dict())

    @app.route('/api/user/<int:user_id>', methods=['PUT'])
    @login_required
    def update_user(user_id: int):
        is_admin = current_role() == 'admin'
        if current_user_id() != user_id and not is_admin:
            raise ForbiddenError('You are not authorized to update this user')
        user = db.session.get(User, user_id)
        if not user:
            raise NotFoundError('user')
        apply_user_changes(user, json_body(), allow_role=is_admin)
        db.session.commit()
        return jsonify(user.to_dict())

    @app.route('/api/user/register', methods=['POST'])
    def register():
        user = create_user(json_body())
        return jsonify({'message': 'User created successfully', 'user': user.to_dict()}), 201

    @app.route('/api/user/register', methods=['PATCH'])
    @login_required
    def rename_user():
        data = json_body()
        new_username = (data.get('newUsername') or '').strip()
        if not new_username:
            raise ValidationError('newUsername is required')
        user = find_user_by_name(data.get('currentUsername'))
        if not user:
            raise NotFoundError('user')
        if user.id != current_user_id() and current_role() != 'admin':
            raise ForbiddenError('You are not authorized to update this user')
        apply_user_changes(user, {'username': new_username}, allow_role=False)
        db.session.commit()
        return jsonify({'message': 'Username updated successfully', 'updatedUsername': user.username})

    @app.route('/api/user/admin')
    @login_required
    def admin_probe():
        if current_role() != 'admin':
            raise ForbiddenError()
        return jsonify({'message': 'Welcome, admin!'})

    # -- administration ---------------------------------------------------

    @app.route('/admin/statistics')
    @admin_required
    def admin_statistics():
        return jsonify(collect_statistics())

    @app.route('/admin/users')
    @admin_required
    def admin_users():
        return jsonify([u.to_dict() for u in User.query.order_by(User.id).all()])

    @app.route('/admin/user/<int:user_id>', methods=['GET'])
    @admin_required
    def admin_view_user(user_id: int):
        user = db.session.get(User, user_id)
        if not user:
            raise NotFoundError('user')
        return jsonify(user.to_dict())

    @app.route('/admin/user/<int:user_id>', methods=['PUT'])
    @admin_required
    def admin_edit_user(user_id: int):
        user = db.session.get(User, user_id)
        if not user:
            raise NotFoundError('user')
        apply_user_changes(user, json_body(), allow_role=True)
        db.session.commit()
        return jsonify(user.to_dict())

    @app.route('/admin/user/<int:user_id>', methods=['DELETE'])
    @admin_required
    def admin_delete_user(user_id: int):
        delete_user_account(user_id)
        return jsonify({'message': 'User deleted successfully'})

    @app.route('/admin/books', methods=['POST'])
    @admin_required
    def admin_add_book():
        data = json_body()
        fields = {key: data[key] for key in ('title', 'author', 'description', 'genre') if key in data}
        book = create_catalog_book(Book, fields)
        return jsonify(book_payload(book)), 201

    @app.route('/admin/books/<int:book_id>', methods=['DELETE'])
    @admin_required
    def admin_delete_book(book_id: int):
        return delete_catalog_book(Book, book_id, 'Book not found')

    @app.route('/admin/nonfiction', methods=['POST'])
    @admin_required
    def admin_add_nonfiction():
        data = json_body()
        fields = {key: data[key] for key in ('title', 'author', 'description') if key in data}
        fields.setdefault('available', True)
        book = create_catalog_book(NonFictionBook, fields, required=NONFICTION_REQUIRED)
        return jsonify(book_payload(book)), 201

    @app.route('/admin/create-admin', methods=['POST'])
    @admin_required
    def admin_create_admin():
        create_user(json_body(), role='admin')
        return jsonify({'message': 'Admin user created successfully'}), 201

    # -- blog and contact -------------------------------------------------

    @app.route('/api/blog-posts', methods=['GET'])
    def blog_posts():
        return jsonify([p.to_dict() for p in BlogPost.query.order_by(BlogPost.id).all()])

    @app.route('/api/blog-posts', methods=['POST'])
    @admin_required
    def create_blog_post():
        data = json_body()
        post = BlogPost(**{key: data.get(key) for key in ('title', 'date', 'author', 'summary', 'image')})
        db.session.add(post)
        db.session.commit()
        return jsonify(post.to_dict()), 201

    @app.route('/api/contact', methods=['POST'])
    def contact():
        data = json_body()
        if not data.get('message'):
            raise ValidationError('Message is required')
        message = ContactMessage(name=data.get('name'), email=data.get('email'), message=data['message'])
        db.session.add(message)
        db.session.commit()
        return jsonify(message.to_dict()), 201

    return app


if __name__ == '__main__':
    application = create_app()
    with application.app_context():
        db.create_all()
    application.run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)))
