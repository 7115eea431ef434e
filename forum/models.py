import sqlite3

from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from sqlalchemy import event
from sqlalchemy.engine import Engine

# SQLAlchemy instance is created here and initialized later in the app factory.
# The models below define the schema; services read and write it through
# parameterized statements in gateway.py.
db = SQLAlchemy()


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ships with foreign keys off; every new connection must opt in.
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    # Unique index is the authority on duplicate usernames.
    username = db.Column(db.String(80), unique=True, nullable=False)

    # Only ever a salted hash, see identity_service.hash_password.
    password_hash = db.Column(db.String(255), nullable=False)

    verified = db.Column(db.Boolean, nullable=False, default=False, server_default="0")

    # URL path under /uploads, None until the first avatar upload.
    avatar = db.Column(db.String(255))

    created_at = db.Column(db.DateTime, server_default=db.func.current_timestamp())

    def __repr__(self) -> str:
        return f"<User {self.username}>"


class Thread(db.Model):
    __tablename__ = "threads"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.Text)
    content = db.Column(db.Text)

    # Threads outlive their author; the reference is nulled instead.
    author_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime, server_default=db.func.current_timestamp())


class Post(db.Model):
    __tablename__ = "posts"

    id = db.Column(db.Integer, primary_key=True)
    thread_id = db.Column(
        db.Integer, db.ForeignKey("threads.id", ondelete="CASCADE"), nullable=False
    )
    author_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    content = db.Column(db.Text)
    created_at = db.Column(db.DateTime, server_default=db.func.current_timestamp())


class SessionRecord(db.Model):
    """Server-side session payload keyed by the opaque cookie token."""
    __tablename__ = "sessions"

    sid = db.Column(db.String(64), primary_key=True)
    data = db.Column(db.Text, nullable=False)

    # Unix timestamp; rows past it are treated as absent.
    expires_at = db.Column(db.Float, nullable=False, index=True)
