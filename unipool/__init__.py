"""
UniPool: university carpooling with ride-scoped realtime chat.
"""

import logging
from flask import Flask, jsonify
from flask_session import Session

from unipool.models import init_db, init_engine
from unipool.utils import config
from unipool.utils.cache import cache

logger = logging.getLogger(__name__)


def create_app(overrides=None):
    """Application factory; overrides are applied on top of environment settings"""
    app = Flask(__name__)
    config.init_app(app, overrides)

    init_engine(app.config["DATABASE_URL"])
    init_db()

    # Server-side session storage shared by HTTP routes and the realtime handshake
    Session(app)
    cache.init_app(app)

    from unipool.auth.user_auth import user_auth_bp
    from unipool.routes.rides import rides_bp
    from unipool.websockets.handlers import get_hub, init_socketio

    app.register_blueprint(user_auth_bp, url_prefix="/api")
    app.register_blueprint(rides_bp, url_prefix="/api/rides")

    init_socketio(app)

    @app.route("/health")
    def health():
        return jsonify({"status": "ok"})

    @app.route("/api/realtime/stats")
    def realtime_stats():
        """Connection and room counts for monitoring"""
        return jsonify(get_hub().manager.get_stats())

    logger.info("UniPool app created")
    return app
