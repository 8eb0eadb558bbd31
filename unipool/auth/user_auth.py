"""
User authentication routes for UniPool.
Populates the server-side session that the realtime handshake reads.
"""

import logging
from flask import Blueprint, request, session, jsonify
from unipool.models.stores import UserStore

logger = logging.getLogger(__name__)

user_auth_bp = Blueprint('user_auth', __name__)

users = UserStore()


def current_user_id():
    """Authenticated user id from the session, or None"""
    user_id = session.get('user_id')
    return user_id if isinstance(user_id, int) else None


@user_auth_bp.route("/login", methods=["POST"])
def login():
    """User login"""
    try:
        data = request.get_json(silent=True) or {}
        username = (data.get('username') or '').strip()
        password = data.get('password') or ''

        if not username or not password:
            return jsonify({"error": "Username and password are required"}), 400

        user = users.get_by_username(username)
        if not user or not user.check_password(password):
            return jsonify({"error": "Invalid username or password"}), 401

        session.clear()
        session['user_id'] = user.id
        session['username'] = user.username

        logger.info(f"User {user.id} logged in")
        return jsonify(user.to_dict()), 200

    except Exception as e:
        logger.error(f"Login error: {e}")
        return jsonify({"error": "Login failed. Please try again."}), 500


@user_auth_bp.route("/logout", methods=["POST"])
def logout():
    """User logout"""
    session.clear()
    return jsonify({"message": "Logged out successfully"}), 200


@user_auth_bp.route("/user")
def get_current_user():
    """Return the logged in user"""
    user_id = current_user_id()
    if user_id is None:
        return jsonify({"error": "Not authenticated"}), 401

    user = users.get_user(user_id)
    if not user:
        session.clear()
        return jsonify({"error": "Not authenticated"}), 401

    return jsonify(user.to_dict()), 200
