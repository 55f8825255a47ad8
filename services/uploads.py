"""Disk storage for uploaded book PDFs and profile pictures."""
from __future__ import annotations

import os
import time

from flask import current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from services.errors import ValidationError

PDF_EXTENSIONS = {'pdf'}
PDF_MIMETYPES = {'application/pdf'}
IMAGE_MIMETYPES = {'image/jpeg', 'image/png', 'image/gif'}
PROFILE_PICTURE_DIR = 'profile-pictures'


def allowed_file(filename, extensions):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in extensions


def _upload_root() -> str:
    root = current_app.config['UPLOAD_FOLDER']
    os.makedirs(root, exist_ok=True)
    return root


def _stream_size(file: FileStorage) -> int:
    stream = file.stream
    position = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(position)
    return size


def save_pdf(file: FileStorage | None) -> str:
    """Store a book PDF and return its name relative to the upload root."""
    if file is None or not file.filename:
        raise ValidationError('No file uploaded')
    if not allowed_file(file.filename, PDF_EXTENSIONS) or file.mimetype not in PDF_MIMETYPES:
        raise ValidationError('Only PDF files are allowed')
    filename = f"{int(time.time() * 1000)}.pdf"
    file.save(os.path.join(_upload_root(), filename))
    return filename


def save_profile_picture(file: FileStorage | None) -> str:
    """Store a profile picture and return the public URL path for it."""
    if file is None or not file.filename:
        raise ValidationError('No file uploaded')
    if file.mimetype not in IMAGE_MIMETYPES:
        raise ValidationError('Only JPEG, PNG, and GIF formats are allowed.')
    if _stream_size(file) > current_app.config['PROFILE_PICTURE_MAX_BYTES']:
        raise ValidationError('Profile picture exceeds the 2MB limit')
    directory = os.path.join(_upload_root(), PROFILE_PICTURE_DIR)
    os.makedirs(directory, exist_ok=True)
    filename = f"{int(time.time() * 1000)}-{secure_filename(file.filename) or 'picture'}"
    file.save(os.path.join(directory, filename))
    return f'/uploads/{PROFILE_PICTURE_DIR}/{filename}'
