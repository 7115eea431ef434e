"""Shared test fixtures for the forum.

Route tests talk to the app only through the test client, so every request
gets its own app context. Service tests use the ``db`` fixture, which pushes
one for the duration of the test.
"""
import pytest

from app import create_app
from models import db as _db
import gateway
import identity_service


@pytest.fixture
def app(tmp_path):
    """Fresh app with its own in-memory database."""
    app = create_app('testing')
    app.config['UPLOAD_ROOT'] = str(tmp_path / 'uploads')
    yield app
    with app.app_context():
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    """App context for calling services directly."""
    with app.app_context():
        yield _db


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def query(app):
    """Run a single SELECT outside of any request and return the first row."""
    def run(statement, params=None):
        with app.app_context():
            return gateway.fetch_one(statement, params)
    return run


@pytest.fixture
def alice(app):
    """Registered user 'alice' with password 'pw1'. Returns the user id."""
    with app.app_context():
        return identity_service.register('alice', 'pw1')


@pytest.fixture
def bob(app):
    with app.app_context():
        return identity_service.register('bob', 'pw2')


@pytest.fixture
def logged_in_client(client, alice):
    """Test client logged in as alice."""
    client.post('/login', data={'username': 'alice', 'password': 'pw1'})
    return client
