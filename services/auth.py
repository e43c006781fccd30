"""Resolve the caller of a request to a borrower.

Registration and credential checks live in another service; it stores the
authenticated user id in the session and this module only reads it back.
"""
from __future__ import annotations

from functools import wraps
from typing import Optional

from flask import g, jsonify, session

from models import db, User


def get_current_user() -> Optional[User]:
    if hasattr(g, '_cached_user'):
        return g._cached_user
    user_id = session.get('user_id')
    user = db.session.get(User, user_id) if user_id else None
    g._cached_user = user
    return user


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not get_current_user():
            return jsonify({'error': 'authentication required', 'kind': 'unauthenticated'}), 401
        return view(*args, **kwargs)

    return wrapped


def admin_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        user = get_current_user()
        if not user:
            return jsonify({'error': 'authentication required', 'kind': 'unauthenticated'}), 401
        if not user.is_admin:
            return jsonify({'error': 'librarian permission required', 'kind': 'forbidden'}), 403
        return view(*args, **kwargs)

    return wrapped
