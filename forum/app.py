import os

from flask import Flask, render_template, request, redirect, url_for, send_from_directory
from flask_login import LoginManager, login_required, current_user
from werkzeug.exceptions import InternalServerError, NotFound, RequestEntityTooLarge

from config import config
from models import db, User
from errors import (
    AuthFailure, DuplicateUsernameError, NotFoundError, StorageError, UploadError, ValidationError,
)
import content_service
import identity_service
import profile_service
import session_manager


def _safe_next(target):
    # Only follow local paths after login; "//host" would leave the site.
    if target and target.startswith("/") and not target.startswith("//"):
        return target
    return url_for("index")


def create_app(config_name=None):
    # App factory, so tests and the CLI get a cleanly configured instance.
    # FLASK_CONFIG picks development/production/testing when no name is given.
    app = Flask(__name__, static_folder="public", static_url_path="/public")
    app.config.from_object(config[config_name or os.environ.get("FLASK_CONFIG", "default")])

    # Initialize SQLAlchemy with the Flask app
    db.init_app(app)

    # Session payloads live in the database; the cookie is only a signed id.
    app.session_interface = session_manager.SqlSessionInterface()

    # Gated routes redirect to the login page without touching the session,
    # so an anonymous hit on them leaves no session behind.
    login_manager = LoginManager()
    login_manager.login_view = "login"
    login_manager.login_message = None
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        # Flask-Login keeps the user id in the session; the row comes from the DB.
        return db.session.get(User, int(user_id))

    os.makedirs(os.path.join(app.config["UPLOAD_ROOT"], app.config["AVATAR_SUBDIR"]), exist_ok=True)

    # Tables are created and the administrator seeded before serving anything.
    with app.app_context():
        db.create_all()
        identity_service.seed_administrator(app.config["ADMIN_USERNAME"], app.config["ADMIN_PASSWORD"])
    app.logger.info("Database ready at %s", app.config["SQLALCHEMY_DATABASE_URI"])

    @app.before_request
    def check_session_store():
        # A session that could not be loaded surfaces here as a StorageError,
        # where the handler below can render it.
        session_manager.ensure_store_available()

    # ---- errors ----

    @app.errorhandler(StorageError)
    def storage_error(exc):
        app.logger.error("Storage failure in %s (%s)", request.endpoint, exc.operation)
        return render_template("error.html", message=exc.message), 500

    @app.errorhandler(InternalServerError)
    def internal_error(exc):
        # Reached for faults outside view dispatch, e.g. saving the session.
        original = getattr(exc, "original_exception", None)
        if isinstance(original, StorageError):
            app.logger.error("Storage failure in %s (%s)", request.endpoint, original.operation)
        return render_template("error.html", message=StorageError.message), 500

    @app.errorhandler(NotFoundError)
    def not_found_error(exc):
        return render_template("error.html", message=exc.message), 404

    @app.errorhandler(NotFound)
    def not_found(exc):
        return render_template("error.html", message=NotFoundError.message), 404

    @app.errorhandler(RequestEntityTooLarge)
    def upload_too_large(exc):
        # Oversized profile posts go back to the profile form with the upload message.
        if current_user.is_authenticated and request.endpoint == "update_profile":
            user = profile_service.view_profile(current_user.id)
            return render_template("MyProfile.html", profile=user, error=UploadError.message), 413
        return render_template("error.html", message=UploadError.message), 413

    # ---- threads ----

    @app.route("/")
    def index():
        # Public landing page: every thread, newest first.
        return render_template("index.html", threads=content_service.list_threads())

    @app.route("/thread/new", methods=["GET", "POST"])
    @login_required
    def new_thread():
        # GET shows the form; POST stores the thread under the current user.
        if request.method == "POST":
            content_service.create_thread(
                current_user.id,
                request.form.get("title", ""),
                request.form.get("content", ""),
            )
            return redirect(url_for("index"))
        return render_template("new_thread.html")

    @app.route("/thread/<int:thread_id>")
    def show_thread(thread_id):
        # One thread with its replies, oldest reply first; unknown ids are a 404.
        thread = content_service.get_thread(thread_id)
        if thread is None:
            raise NotFoundError("That thread does not exist.")
        posts = content_service.list_posts(thread_id)
        return render_template("thread.html", thread=thread, posts=posts)

    @app.route("/thread/<int:thread_id>/post", methods=["POST"])
    @login_required
    def new_post(thread_id):
        # Reply, then go back to the thread. A missing thread raises NotFoundError.
        content_service.create_post(thread_id, current_user.id, request.form.get("content", ""))
        return redirect(url_for("show_thread", thread_id=thread_id))

    # ---- authentication ----

    @app.route("/login", methods=["GET", "POST"])
    def login():
        # Basic login flow:
        # - check credentials
        # - open a fresh server-side session
        # - go back to where the user came from (local paths only)
        if request.method == "POST":
            username = request.form.get("username", "")
            try:
                user = identity_service.authenticate(username, request.form.get("password", ""))
            except AuthFailure as exc:
                # Same page and message whichever part of the credentials was wrong.
                return render_template("login.html", error=exc.message, username=username), 401

            session_manager.start_session(user)
            return redirect(_safe_next(request.args.get("next")))

        return render_template("login.html")

    @app.route("/logout")
    def logout():
        # Deletes the stored session; harmless when nobody is logged in.
        session_manager.end_session()
        return redirect(url_for("index"))

    @app.route("/register", methods=["GET", "POST"])
    def register():
        # Form-based registration; a new account is logged in straight away.
        if request.method == "POST":
            username = request.form.get("username", "")
            try:
                user_id = identity_service.register(username, request.form.get("password", ""))
            except ValidationError as exc:
                return render_template("register.html", error=exc.message, username=username), 400
            except DuplicateUsernameError as exc:
                return render_template("register.html", error=exc.message, username=username), 409

            session_manager.start_session(db.session.get(User, user_id))
            return redirect(url_for("index"))

        return render_template("register.html")

    # ---- profile ----

    @app.route("/MyProfile")
    @login_required
    def my_profile():
        # Profile page of the logged-in user, never anybody else's.
        return render_template("MyProfile.html", profile=profile_service.view_profile(current_user.id))

    @app.route("/update-profile", methods=["POST"])
    @login_required
    def update_profile():
        # Multipart form: new username plus an optional avatar file.
        # Rejected input re-renders the profile with the message and changes nothing.
        try:
            user = profile_service.update_profile(
                current_user.id, request.form.get("username", ""), request.files.get("avatar")
            )
        except (ValidationError, UploadError) as exc:
            profile = profile_service.view_profile(current_user.id)
            return render_template("MyProfile.html", profile=profile, error=exc.message), 400
        except DuplicateUsernameError as exc:
            profile = profile_service.view_profile(current_user.id)
            return render_template("MyProfile.html", profile=profile, error=exc.message), 409

        # Keep the session's copy of the username in step with the rename.
        session_manager.refresh_identity(user["username"])
        return redirect(url_for("my_profile"))

    @app.route("/uploads/<path:filename>")
    def uploaded_file(filename):
        # Serves stored avatars; browsers must not sniff them into another type.
        response = send_from_directory(app.config["UPLOAD_ROOT"], filename)
        response.headers["X-Content-Type-Options"] = "nosniff"
        return response

    # ---- maintenance commands ----

    @app.cli.command("seed-admin")
    def seed_admin_command():
        """Create the administrator account if it is missing."""
        created = identity_service.seed_administrator(
            app.config["ADMIN_USERNAME"], app.config["ADMIN_PASSWORD"]
        )
        print("Administrator created." if created else "Administrator already exists.")

    @app.cli.command("purge-sessions")
    def purge_sessions_command():
        """Delete expired server-side sessions."""
        print(f"Removed {session_manager.purge_expired()} expired session(s).")

    return app


if __name__ == "__main__":
    # Run a local dev server on the configured port.
    app = create_app()
    app.run(port=app.config["PORT"], debug=app.config.get("DEBUG", False))
