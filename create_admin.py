#!/usr/bin/env python3
"""
Create or promote an administrator for the library backend.
Usage:
  python create_admin.py --username admin --email admin@example.com --password secret

This script must be run from the project root and will use the app's SQLAlchemy
configuration. It creates the user if missing, sets role='admin' and sets the
password hash to the provided password.
"""
import argparse
import sys

from app import create_app
from models import db, User
from services.auth import hash_password


def main(argv=None):
    parser = argparse.ArgumentParser(description='Create or promote an admin user')
    parser.add_argument('--username', '-u', required=True, help='admin username')
    parser.add_argument('--email', '-e', help='admin email (required when creating)')
    parser.add_argument('--password', '-p', required=True, help='admin password')
    parser.add_argument('--db-uri', help='optional DB URI to override app config')
    args = parser.parse_args(argv)

    config = {}
    if args.db_uri:
        config['SQLALCHEMY_DATABASE_URI'] = args.db_uri

    app = create_app(config)
    with app.app_context():
        db.create_all()
        username = args.username.strip().lower()
        user = User.query.filter_by(username=username).first()
        if not user:
            if not args.email:
                parser.error('--email is required to create a new admin')
            user = User(username=username, email=args.email, password_hash=hash_password(args.password), role='admin')
            db.session.add(user)
            db.session.commit()
            print(f"Created new admin user: {username}")
            return 0
        user.password_hash = hash_password(args.password)
        user.role = 'admin'
        db.session.commit()
        print(f"Updated existing user '{username}' to admin and set new password")
        return 0


if __name__ == '__main__':
    sys.exit(main())
