"""Flask application configuration."""
import os
import tempfile
from datetime import timedelta
from pathlib import Path

basedir = Path(__file__).parent.absolute()


class Config:
    """Base configuration, overridable through environment variables."""
    SECRET_KEY = os.environ.get('SESSION_SECRET') or 'dev-secret-key-change-in-production'
    PORT = int(os.environ.get('PORT', 3000))

    # SQLite file holding users, threads, posts and sessions
    DB_PATH = os.environ.get('DB_PATH') or str(basedir / 'forum.db')
    SQLALCHEMY_DATABASE_URI = f"sqlite:///{DB_PATH}"
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Server-side sessions: one week, or until browser close when not permanent
    SESSION_COOKIE_NAME = 'forum_session'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    SESSION_PERMANENT = os.environ.get('SESSION_PERMANENT', 'true').lower() == 'true'
    PERMANENT_SESSION_LIFETIME = timedelta(days=7)

    # Passwords
    PASSWORD_HASH_METHOD = 'pbkdf2:sha256:600000'

    # Administrator seeded at startup
    ADMIN_USERNAME = os.environ.get('ADMIN_USERNAME', 'Admin')
    ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD', 'changeme')

    # Avatars
    UPLOAD_ROOT = os.environ.get('UPLOAD_ROOT') or str(basedir / 'uploads')
    AVATAR_SUBDIR = 'avatars'
    MAX_AVATAR_BYTES = 10 * 1024 * 1024  # 10 MiB
    MAX_CONTENT_LENGTH = 11 * 1024 * 1024  # multipart overhead on top of the avatar cap


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    SESSION_COOKIE_SECURE = True


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    SECRET_KEY = 'test-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'  # in-memory
    PASSWORD_HASH_METHOD = 'pbkdf2:sha256:1000'
    UPLOAD_ROOT = os.path.join(tempfile.gettempdir(), 'forum-test-uploads')
    ADMIN_PASSWORD = 'adminpass'


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
