import base64
import json
import shutil
import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from classifieds.core.config import Settings
from classifieds.core.database import Database
from classifieds.main import create_app
from classifieds.models.user import User

# 1x1 transparent gif
GIF_BYTES = base64.b64decode("R0lGODlhAQABAIAAAAUEBAAAACwAAAAAAQABAAACAkQBADs=")


def make_settings(tmpdir: str, **overrides) -> Settings:
    values = dict(
        secret_key="test-secret-key",
        database_url=f"sqlite:///{tmpdir}/test.db",
        media_root=Path(tmpdir) / "uploads",
        password_hash_rounds=4,
        log_level="WARNING",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


class EngineTestCase(unittest.TestCase):
    """A fresh SQLite file and one open session per test."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmpdir, True)

        self.database = Database(f"sqlite:///{self.tmpdir}/engine.db")
        self.database.init()
        self.addCleanup(self.database.dispose)

        self.db = self.database.session()
        self.addCleanup(self.db.close)

    def make_user(self, username: str) -> User:
        user = User(username=username, email=f"{username}@example.com", hashed_password="x")
        self.db.add(user)
        self.db.commit()
        return user


class ApiTestCase(unittest.TestCase):
    """The full app against a temporary database and media directory."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmpdir, True)

        self.settings = make_settings(self.tmpdir)
        self.app = create_app(self.settings)
        test_client = TestClient(self.app)
        self.client = test_client.__enter__()
        self.addCleanup(test_client.__exit__, None, None, None)

    def register(self, username: str, password: str = "secret123") -> str:
        res = self.client.post(
            "/api/auth/register",
            json={"username": username, "email": f"{username}@example.com", "password": password},
        )
        self.assertEqual(res.status_code, 200, res.text)
        return res.json()["token"]

    def auth(self, token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    def create_listing(self, token: str, **fields):
        data = {
            "title": "Test Listing",
            "description": "A test listing",
            "price": 99.99,
            "category": "Electronics",
            "condition": "Good",
        }
        data.update(fields)
        return self.client.post(
            "/api/listings",
            files={"file": ("item.gif", GIF_BYTES, "image/gif")},
            data={"data": json.dumps(data)},
            headers=self.auth(token),
        )
