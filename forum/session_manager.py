"""
Server-side sessions and the login/logout transitions.

The browser only ever holds a signed, random session id. The payload lives in
the ``sessions`` table, so logging out really destroys the session instead of
just asking the client to forget a cookie.
"""
import logging
import secrets
import time

from flask import current_app, session
from flask.json.tag import TaggedJSONSerializer
from flask.sessions import SessionInterface, SessionMixin
from flask_login import login_user, logout_user
from itsdangerous import BadSignature, Signer
from werkzeug.datastructures import CallbackDict

import gateway
from errors import StorageError

logger = logging.getLogger(__name__)


def _new_sid() -> str:
    return secrets.token_urlsafe(32)


def _delete_record(sid: str) -> None:
    gateway.mutate(
        "DELETE FROM sessions WHERE sid = :sid", {"sid": sid}, operation="delete_session"
    )


class ServerSession(CallbackDict, SessionMixin):
    """Session dict that remembers its id and whether it was changed."""

    def __init__(self, initial=None, sid=None, new=False):
        def on_update(self):
            self.modified = True

        CallbackDict.__init__(self, initial, on_update)
        self.sid = sid
        self.new = new
        self.modified = False
        self.rotated_from = None

    def rotate(self) -> None:
        """Move the payload to a fresh id; the old row is dropped on save."""
        if not self.new:
            self.rotated_from = self.sid
        self.sid = _new_sid()
        self.new = True
        self.modified = True


class SqlSessionInterface(SessionInterface):
    """Stores session payloads in the sessions table via the gateway."""
    serializer = TaggedJSONSerializer()
    session_class = ServerSession
    salt = "forum-session"

    def _signer(self, app):
        return Signer(app.secret_key, salt=self.salt)

    def open_session(self, app, request):
        cookie = request.cookies.get(self.get_cookie_name(app))
        if not cookie:
            return self.session_class(sid=_new_sid(), new=True)

        try:
            sid = self._signer(app).unsign(cookie).decode("utf-8")
        except BadSignature:
            return self.session_class(sid=_new_sid(), new=True)

        try:
            row = gateway.fetch_one(
                "SELECT data, expires_at FROM sessions WHERE sid = :sid",
                {"sid": sid},
                operation="load_session",
            )
            if row is not None and row["expires_at"] < time.time():
                _delete_record(sid)
                row = None
        except StorageError as exc:
            # Error handlers need a readable session to render the layout, so
            # hand out a null one and let ensure_store_available re-raise.
            null = self.make_null_session(app)
            null.store_error = exc
            return null

        if row is None:
            return self.session_class(sid=_new_sid(), new=True)

        return self.session_class(self.serializer.loads(row["data"]), sid=sid)

    def save_session(self, app, session, response):
        name = self.get_cookie_name(app)
        domain = self.get_cookie_domain(app)
        path = self.get_cookie_path(app)
        response.vary.add("Cookie")

        if session.rotated_from:
            _delete_record(session.rotated_from)
            session.rotated_from = None

        # Nothing worth keeping: never persist anonymous sessions, and drop
        # the row of one that was just cleared.
        if not session:
            if session.modified:
                if not session.new:
                    _delete_record(session.sid)
                response.delete_cookie(name, domain=domain, path=path)
            return

        if not self.should_set_cookie(app, session):
            return

        # Browser-session cookies still get a bounded server-side lifetime.
        expires_at = time.time() + app.permanent_session_lifetime.total_seconds()
        gateway.mutate(
            "INSERT INTO sessions (sid, data, expires_at) VALUES (:sid, :data, :expires_at) "
            "ON CONFLICT(sid) DO UPDATE SET data = excluded.data, expires_at = excluded.expires_at",
            {"sid": session.sid, "data": self.serializer.dumps(dict(session)), "expires_at": expires_at},
            operation="save_session",
        )
        response.set_cookie(
            name,
            self._signer(app).sign(session.sid).decode("utf-8"),
            expires=self.get_expiration_time(app, session),
            httponly=self.get_cookie_httponly(app),
            domain=domain,
            path=path,
            secure=self.get_cookie_secure(app),
            samesite=self.get_cookie_samesite(app),
        )


def start_session(user) -> None:
    """Anonymous -> Authenticated: bind the user to a freshly issued session."""
    session.rotate()
    login_user(user)
    session["username"] = user.username
    session["verified"] = bool(user.verified)
    session.permanent = current_app.config["SESSION_PERMANENT"]
    logger.info("User %s logged in", user.username)


def end_session() -> None:
    """Authenticated -> Anonymous: the stored session is deleted on save."""
    username = session.get("username")
    logout_user()
    session.clear()
    if username:
        logger.info("User %s logged out", username)


def ensure_store_available() -> None:
    """Re-raise a session load failure from inside request dispatch."""
    error = getattr(session, "store_error", None)
    if error is not None:
        raise error


def refresh_identity(username: str) -> None:
    session["username"] = username


def purge_expired() -> int:
    """Delete expired session rows and return how many were removed."""
    result = gateway.mutate(
        "DELETE FROM sessions WHERE expires_at < :now",
        {"now": time.time()},
        operation="purge_sessions",
    )
    if result.rows_affected:
        logger.info("Purged %d expired session(s)", result.rows_affected)
    return result.rows_affected
