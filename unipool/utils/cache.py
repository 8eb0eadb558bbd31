"""
Caching helpers for UniPool.
"""

from flask_caching import Cache

from unipool.models.stores import UserStore

cache = Cache()

_users = UserStore()


@cache.memoize(timeout=300)
def get_display_name(user_id):
    """Username shown next to chat messages; None when the user does not exist"""
    user = _users.get_user(user_id)
    return user.username if user else None
