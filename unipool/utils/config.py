"""
Configuration module for UniPool.
Handles app configuration, session storage, cache settings and logging.
"""

import logging
import os
import ssl

import redis
from cachelib import FileSystemCache
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


def get_redis_url():
    """Get Redis URL with proper SSL configuration for Heroku"""
    redis_url = os.getenv("REDIS_URL")

    if redis_url and redis_url.startswith("rediss://"):
        return redis_url + "?ssl_cert_reqs=none"
    elif redis_url:
        return redis_url
    else:
        # Local fallback
        return "redis://localhost:6379/0"


def _env_int(name, default):
    value = os.getenv(name)
    return int(value) if value else default


def _env_list(name, default):
    value = os.getenv(name)
    if not value:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


def load_settings():
    """Read settings from the environment"""
    settings = {
        "SECRET_KEY": os.getenv("SECRET_KEY", "your-secret-key-change-in-production"),
        "DATABASE_URL": os.getenv("DATABASE_URL", "sqlite:///unipool.db"),
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),

        # Sessions are shared by the HTTP routes and the realtime handshake
        "SESSION_PERMANENT": True,
        "SESSION_USE_SIGNER": True,
        "SESSION_KEY_PREFIX": "unipool:",
        "SESSION_COOKIE_NAME": os.getenv("SESSION_COOKIE_NAME", "unipool_session"),
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",

        "CACHE_DEFAULT_TIMEOUT": 300,

        "CHAT_MAX_MESSAGE_LENGTH": _env_int("CHAT_MAX_MESSAGE_LENGTH", 2000),
        "CHAT_MESSAGE_KINDS": _env_list("CHAT_MESSAGE_KINDS", ("text",)),

        "SOCKETIO_ASYNC_MODE": os.getenv("SOCKETIO_ASYNC_MODE", "threading"),
        "SOCKETIO_CORS_ORIGINS": _env_list("SOCKETIO_CORS_ORIGINS", None),
        "SOCKETIO_PING_INTERVAL": _env_int("SOCKETIO_PING_INTERVAL", 25),
        "SOCKETIO_PING_TIMEOUT": _env_int("SOCKETIO_PING_TIMEOUT", 60),
    }

    if os.getenv("FLASK_ENV") == "production":
        # Production: Redis for sessions and cache (multi-dyno safe)
        redis_url = get_redis_url()
        settings["SESSION_TYPE"] = "redis"
        if redis_url.startswith("rediss://"):
            settings["SESSION_REDIS"] = redis.from_url(redis_url, ssl_cert_reqs=ssl.CERT_NONE)
        else:
            settings["SESSION_REDIS"] = redis.from_url(redis_url)
        settings["SESSION_COOKIE_SECURE"] = True
        settings["CACHE_TYPE"] = "RedisCache"
        settings["CACHE_REDIS_URL"] = redis_url
    else:
        # Development: filesystem-backed sessions, in-memory cache
        settings["SESSION_TYPE"] = "cachelib"
        settings["SESSION_CACHELIB"] = FileSystemCache(
            os.getenv("SESSION_FILE_DIR", "/tmp/unipool_sessions"), threshold=500
        )
        settings["CACHE_TYPE"] = "SimpleCache"

    return settings


def init_app(app, overrides=None):
    """Apply configuration to the Flask app; overrides win over the environment"""
    app.config.update(load_settings())
    if overrides:
        app.config.update(overrides)

    configure_logging(app)
    logger.info(
        f"Configuration loaded (sessions: {app.config['SESSION_TYPE']}, "
        f"cache: {app.config['CACHE_TYPE']})"
    )


def configure_logging(app):
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger("unipool").setLevel(level)
