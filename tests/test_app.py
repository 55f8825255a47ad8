import datetime

from flask_jwt_extended import create_access_token

from models import db, Book, BorrowedBook, ContactMessage, NonFictionBook, User


def test_index(client):
    resp = client.get('/')
    assert resp.status_code == 200
    assert resp.get_data(as_text=True) == 'Backend is running!'


def test_borrow_scenario_between_two_users(client, make_user, make_book, auth_headers):
    u1 = make_user('u1')
    u2 = make_user('u2')
    b1 = make_book('B1')
    u1_id, u2_id, b1_id = u1.id, u2.id, b1.id
    h1, h2 = auth_headers(u1), auth_headers(u2)

    resp = client.patch(f'/api/books/{b1_id}/borrow', headers=h1)
    assert resp.status_code == 200
    assert resp.get_json()['message'] == 'Book borrowed successfully'

    book = client.get(f'/api/books/{b1_id}').get_json()
    assert book['borrowed'] is True
    assert book['borrowedBy'] == u1_id

    resp = client.patch(f'/api/books/{b1_id}/borrow', headers=h2)
    assert resp.status_code == 400
    assert resp.get_json() == {'message': 'Book is already borrowed', 'error': 'conflict'}

    resp = client.patch(f'/api/books/{b1_id}/return', headers=h2)
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Book is not currently borrowed by you'

    resp = client.patch(f'/api/books/{b1_id}/return', headers=h1)
    assert resp.status_code == 200
    book = client.get(f'/api/books/{b1_id}').get_json()
    assert book['borrowed'] is False
    assert book['borrowedBy'] is None

    resp = client.patch(f'/api/books/{b1_id}/borrow', headers=h2)
    assert resp.status_code == 200
    assert resp.get_json()['book']['borrowedBy'] == u2_id
    assert db.session.get(User, u1_id).borrowed_books == []
    assert [e.book_id for e in db.session.get(User, u2_id).borrowed_books] == [b1_id]


def test_borrow_requires_token(client, make_book):
    book = make_book()
    resp = client.patch(f'/api/books/{book.id}/borrow')
    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'unauthorized'


def test_borrow_rejects_invalid_token(client, make_book):
    book = make_book()
    resp = client.patch(f'/api/books/{book.id}/borrow', headers={'Authorization': 'Bearer not-a-jwt'})
    assert resp.status_code == 403


def test_borrow_missing_book_and_missing_user(client, app, make_book):
    ghost_token = create_access_token(identity='404', additional_claims={'role': 'user'})
    headers = {'Authorization': f'Bearer {ghost_token}'}

    resp = client.patch('/api/books/12345/borrow', headers=headers)
    assert resp.status_code == 404
    assert resp.get_json()['message'] == 'Book not found'

    book = make_book()
    resp = client.patch(f'/api/books/{book.id}/borrow', headers=headers)
    assert resp.status_code == 404
    assert resp.get_json()['message'] == 'User not found'
    assert db.session.get(Book, book.id).borrowed is False


def test_nonfiction_borrow_needs_no_auth(client, make_book):
    book = make_book('Cosmos', model=NonFictionBook)
    book_id = book.id

    resp = client.patch(f'/api/nonfiction/{book_id}/borrow')
    assert resp.status_code == 200
    assert resp.get_json()['book']['borrowed'] is True
    assert resp.get_json()['book']['borrowedBy'] is None

    resp = client.patch(f'/api/nonfiction/{book_id}/borrow')
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'This book is already borrowed'

    assert client.patch(f'/api/nonfiction/{book_id}/return').status_code == 200
    resp = client.patch(f'/api/nonfiction/{book_id}/return')
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'This book is already returned'

    resp = client.patch('/api/nonfiction/999/borrow')
    assert resp.status_code == 404


def test_list_books_paginates(client, make_book):
    for i in range(12):
        make_book(f'Book {i}', pdf_url=f'file{i}.pdf')

    data = client.get('/api/books?page=2&limit=5').get_json()
    assert data['totalBooks'] == 12
    assert data['totalPages'] == 3
    assert data['currentPage'] == 2
    assert [b['title'] for b in data['books']] == [f'Book {i}' for i in range(5, 10)]
    assert data['books'][0]['pdfUrl'] == 'http://localhost/uploads/file5.pdf'

    data = client.get('/api/books?page=abc&limit=0').get_json()
    assert data['currentPage'] == 1
    assert len(data['books']) == 10


def test_nonfiction_list_filters_genre(client, make_book):
    make_book('Sapiens', model=NonFictionBook)
    make_book('Odd', model=NonFictionBook, genre='Essay')

    data = client.get('/api/nonfiction').get_json()
    assert [b['title'] for b in data['books']] == ['Sapiens']
    assert data['totalBooks'] == 1


def test_search_matches_any_word_across_catalogs(client, make_book):
    make_book('Romeo and Juliet')
    make_book('Moby Dick')
    make_book('A Brief History of Time', model=NonFictionBook)

    resp = client.get('/api/search?query=juliet history')
    assert resp.status_code == 200
    titles = [b['title'] for b in resp.get_json()]
    assert titles == ['Romeo and Juliet', 'A Brief History of Time']

    resp = client.get('/api/search')
    assert resp.status_code == 400


def test_book_mutations_require_admin(client, make_user, make_book, auth_headers):
    user = make_user('reader')
    book = make_book()
    headers = auth_headers(user)

    assert client.post('/api/books', json={'title': 'X'}, headers=headers).status_code == 403
    assert client.put(f'/api/books/{book.id}', json={'title': 'X'}, headers=headers).status_code == 403
    assert client.delete(f'/api/books/{book.id}', headers=headers).status_code == 403
    assert client.post('/api/books', json={'title': 'X'}).status_code == 401


def test_admin_book_crud_keeps_borrow_state_out_of_reach(client, make_user, auth_headers):
    admin = make_user('admin', role='admin')
    headers = auth_headers(admin)

    resp = client.post('/api/books', json={'title': 'Emma', 'pages': '320', 'borrowed': True}, headers=headers)
    assert resp.status_code == 201
    created = resp.get_json()
    assert created['pages'] == 320
    assert created['borrowed'] is False
    assert created['genre'] == 'fiction'

    resp = client.patch(f"/api/books/{created['id']}", json={'author': 'Austen', 'borrowedBy': admin.id}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()['author'] == 'Austen'
    assert resp.get_json()['borrowedBy'] is None

    resp = client.put(f"/api/books/{created['id']}", json={'pages': 'many'}, headers=headers)
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'bad_request'

    resp = client.delete(f"/api/books/{created['id']}", headers=headers)
    assert resp.status_code == 200
    assert client.get(f"/api/books/{created['id']}").status_code == 404


def test_nonfiction_create_requires_fields(client, make_user, auth_headers):
    headers = auth_headers(make_user('admin', role='admin'))

    resp = client.post('/api/nonfiction', json={'title': 'Cosmos'}, headers=headers)
    assert resp.status_code == 400

    resp = client.post('/api/nonfiction', json={'title': 'Cosmos', 'author': 'Sagan', 'available': True}, headers=headers)
    assert resp.status_code == 201
    assert resp.get_json()['genre'] == 'Non-Fiction'


def test_deleting_borrowed_book_is_refused(client, make_user, make_book, auth_headers):
    admin = make_user('admin', role='admin')
    reader = make_user('reader')
    book = make_book()
    book_id = book.id
    client.patch(f'/api/books/{book_id}/borrow', headers=auth_headers(reader))

    resp = client.delete(f'/admin/books/{book_id}', headers=auth_headers(admin))
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'conflict'
    assert db.session.get(Book, book_id) is not None


def test_signup_then_login(client):
    resp = client.post('/api/auth/signup', json={'username': 'Reader', 'email': 'r@example.com', 'password': 'pw'})
    assert resp.status_code == 201
    assert resp.get_json()['token']

    resp = client.post('/api/auth/signup', json={'username': 'reader', 'email': 'other@example.com', 'password': 'pw'})
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'User already exists'

    resp = client.post('/api/auth/login', json={'username': 'READER', 'password': 'pw'})
    assert resp.status_code == 200
    assert resp.get_json()['role'] == 'user'

    resp = client.post('/api/auth/login', json={'username': 'reader', 'password': 'nope'})
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Incorrect password'

    resp = client.post('/api/auth/login', json={'username': 'ghost', 'password': 'pw'})
    assert resp.get_json()['message'] == 'User not found'


def test_login_by_email(client, make_user):
    make_user('alice', password='pw')

    resp = client.post('/login', json={'email': 'alice@example.com', 'password': 'pw'})
    assert resp.status_code == 200
    token = resp.get_json()['token']

    resp = client.get('/api/protected-route', headers={'Authorization': f'Bearer {token}'})
    assert resp.status_code == 200
    assert resp.get_json()['user']['role'] == 'user'

    assert client.post('/login', json={'email': 'nobody@example.com', 'password': 'pw'}).status_code == 404
    assert client.post('/login', json={'email': 'alice@example.com', 'password': 'bad'}).status_code == 400


def test_register_ignores_requested_role(client):
    resp = client.post('/api/user/register', json={'username': 'Eve', 'email': 'eve@example.com', 'password': 'pw', 'role': 'admin'})
    assert resp.status_code == 201
    user = resp.get_json()['user']
    assert user['role'] == 'user'
    assert user['username'] == 'eve'
    assert 'password_hash' not in user


def test_user_summary_and_profile(client, make_user, make_book, auth_headers):
    user = make_user()
    book = make_book('Recent')
    old = make_book('Old')
    headers = auth_headers(user)
    client.patch(f'/api/books/{book.id}/borrow', headers=headers)
    client.patch(f'/api/books/{old.id}/borrow', headers=headers)
    entry = BorrowedBook.query.filter_by(book_id=old.id).one()
    entry.borrow_date = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(days=30)
    db.session.commit()

    summary = client.get('/api/user', headers=headers).get_json()
    assert summary['borrowedBooksCount'] == 2
    assert {e['bookId'] for e in summary['borrowedBooks']} == {book.id, old.id}

    profile = client.get('/api/user/profile', headers=headers).get_json()
    assert profile['recentlyBorrowed'] is True
    assert [b['title'] for b in profile['recentlyBorrowedBooks']] == ['Recent']


def test_update_user_self_or_admin(client, make_user, auth_headers):
    alice = make_user('alice')
    bob = make_user('bob')
    admin = make_user('admin', role='admin')

    resp = client.put(f'/api/user/{alice.id}', json={'email': 'new@example.com'}, headers=auth_headers(bob))
    assert resp.status_code == 403

    resp = client.put(f'/api/user/{alice.id}', json={'role': 'admin'}, headers=auth_headers(alice))
    assert resp.status_code == 403

    resp = client.put(f'/api/user/{alice.id}', json={'email': 'new@example.com'}, headers=auth_headers(alice))
    assert resp.status_code == 200
    assert resp.get_json()['email'] == 'new@example.com'

    resp = client.put(f'/api/user/{bob.id}', json={'role': 'admin'}, headers=auth_headers(admin))
    assert resp.get_json()['role'] == 'admin'


def test_rename_username(client, make_user, auth_headers):
    alice = make_user('alice')
    make_user('bob')
    headers = auth_headers(alice)

    resp = client.patch('/api/user/register', json={'currentUsername': 'alice', 'newUsername': 'Bob'}, headers=headers)
    assert resp.status_code == 400

    resp = client.patch('/api/user/register', json={'currentUsername': 'bob', 'newUsername': 'robert'}, headers=headers)
    assert resp.status_code == 403

    resp = client.patch('/api/user/register', json={'currentUsername': 'alice', 'newUsername': 'Alicia'}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()['updatedUsername'] == 'alicia'


def test_admin_routes(client, make_user, make_book, auth_headers):
    admin = make_user('admin', role='admin')
    reader = make_user('reader')
    reader_id = reader.id
    book = make_book()
    admin_headers = auth_headers(admin)

    assert client.get('/admin/users', headers=auth_headers(reader)).status_code == 403
    assert client.get('/api/user/admin', headers=auth_headers(reader)).status_code == 403
    assert client.get('/api/user/admin', headers=admin_headers).get_json()['message'] == 'Welcome, admin!'

    users = client.get('/admin/users', headers=admin_headers).get_json()
    assert {u['username'] for u in users} == {'admin', 'reader'}

    client.patch(f'/api/books/{book.id}/borrow', headers=auth_headers(reader))
    resp = client.delete(f'/admin/user/{reader_id}', headers=admin_headers)
    assert resp.status_code == 400

    client.patch(f'/api/books/{book.id}/return', headers=auth_headers(reader))
    resp = client.delete(f'/admin/user/{reader_id}', headers=admin_headers)
    assert resp.status_code == 200
    assert db.session.get(User, reader_id) is None
    assert client.get(f'/admin/user/{reader_id}', headers=admin_headers).status_code == 404

    resp = client.post('/admin/create-admin', json={'username': 'root', 'email': 'root@example.com', 'password': 'pw'}, headers=admin_headers)
    assert resp.status_code == 201
    assert User.query.filter_by(username='root').one().role == 'admin'

    resp = client.post('/admin/nonfiction', json={'title': 'Cosmos', 'author': 'Sagan'}, headers=admin_headers)
    assert resp.status_code == 201
    assert NonFictionBook.query.filter_by(title='Cosmos').one().available is True


def test_statistics_endpoint(client, make_user, make_book, auth_headers):
    admin = make_user('admin', role='admin')
    reader = make_user('reader')
    books = [make_book(f'B{i}') for i in range(3)]
    client.patch(f'/api/books/{books[1].id}/borrow', headers=auth_headers(reader))

    resp = client.get('/admin/statistics', headers=auth_headers(admin))
    assert resp.status_code == 200
    stats = resp.get_json()
    assert stats['totalBooks'] == 3
    assert stats['borrowedBooks'] == 1
    assert stats['userCount'] == 2
    assert stats['mostPopularBooks'][0]['title'] == 'B1'


def test_blog_posts_and_contact(client, make_user, auth_headers):
    admin = make_user('admin', role='admin')

    assert client.post('/api/blog-posts', json={'title': 'Hello'}).status_code == 401
    resp = client.post('/api/blog-posts', json={'title': 'Hello', 'author': 'Staff'}, headers=auth_headers(admin))
    assert resp.status_code == 201
    assert [p['title'] for p in client.get('/api/blog-posts').get_json()] == ['Hello']

    assert client.post('/api/contact', json={'name': 'Ann'}).status_code == 400
    resp = client.post('/api/contact', json={'name': 'Ann', 'email': 'ann@example.com', 'message': 'Hi'})
    assert resp.status_code == 201
    assert ContactMessage.query.count() == 1


def test_unknown_route_renders_json(client):
    resp = client.get('/api/nothing-here')
    assert resp.status_code == 404
    assert resp.get_json()['error'] == 'not_found'
