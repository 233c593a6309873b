import shutil
import tempfile

import pytest
from imageboard import create_app, db


@pytest.fixture()
def socket_dir():
    """A short-lived directory for worker sockets.

    Kept short because Unix socket paths are limited to ~100 bytes.
    """
    path = tempfile.mkdtemp(prefix="ibm-")
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


@pytest.fixture(scope='module')
def app():
    """
    Creates a test Flask application instance with testing-specific configuration.
    """
    config_overrides = {
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "METRICS_ENABLED": True,
        "METRICS_SERVE_PEERS": False,
        "WORKER_ID": None,
        "METRICS_SOCKET_DIR": tempfile.mkdtemp(prefix="ibm-app-"),
        "SERVER_NAME": "localhost.localdomain",  # Required for url_for to work in tests
    }
    app = create_app(config_overrides)

    with app.app_context():
        db.create_all()
        engine = db.engine
        try:
            yield app
        finally:
            db.session.remove()
            db.drop_all()
            engine.dispose()
            shutil.rmtree(config_overrides["METRICS_SOCKET_DIR"], ignore_errors=True)


@pytest.fixture()
def client(app):
    """A test client for the app."""
    with app.app_context():
        yield app.test_client()
