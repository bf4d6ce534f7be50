"""Shared test fixtures for the keepsake API test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, no Supabase)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- upload_dir: fresh local storage directory per test
- make_upload / sign_payload: helpers for multipart uploads and Stripe signatures
"""

import hashlib
import hmac
import io
import json
import time

import pytest

from keepsake import create_app
from keepsake.extensions import db as _db


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture(autouse=True)
def upload_dir(app, tmp_path, monkeypatch):
    """Point the local storage fallback at a per-test directory."""
    path = tmp_path / "uploads"
    monkeypatch.setitem(app.config, "LOCAL_UPLOAD_DIR", str(path))
    return path


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


def make_upload(metadata=None, files=(("photo.jpg", b"\xff\xd8jpeg-bytes"),), raw=None):
    """Build a multipart body for POST /api/upload.

    metadata is JSON-encoded into the "data" field unless raw is given.
    """
    data = {}
    if raw is not None:
        data["data"] = raw
    elif metadata is not None:
        data["data"] = json.dumps(metadata)
    data["files"] = [(io.BytesIO(content), name) for name, content in files]
    return data


def sign_payload(payload, secret="whsec_test_fake", timestamp=None):
    """Build a Stripe-Signature header for payload (bytes)."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"
