import os

os.environ["BCRYPT_ROUNDS"] = "4"
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ["ADMIN_EMAIL"] = "root@eyes-perfume.com"
os.environ["ADMIN_PASSWORD"] = "open-sesame"
os.environ["DATABASE_URL"] = ""
os.environ["DATABASE_NAME"] = ""

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes, get_db
from mailer import get_mailer
from main import app
from security import hash_secret


class RecordingMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, html, text=None):
        if self.fail:
            return False, "provider unavailable"
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return True, None

    def last_code(self, email):
        for message in reversed(self.sent):
            if message["to"] == email:
                # text body: "... verification code is 123456. It expires ..."
                return message["text"].split("code is ")[1].split(".")[0]
        raise AssertionError(f"no email sent to {email}")


@pytest.fixture
def db():
    database = mongomock.MongoClient()["shop_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def client(db, mailer):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_mailer] = lambda: mailer
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_product(db):
    def _make(name="Mystic Rose", price=89.0, stock=5, **extra):
        doc = {
            "name": name,
            "brand": "EYES",
            "description": "",
            "category": "floral",
            "price": price,
            "images": ["https://img.test/" + name.replace(" ", "-").lower() + ".jpg"],
            "stock": stock,
            "rating": 0,
            "rating_sum": 0,
            "review_count": 0,
            **extra,
        }
        return create_document(db, "product", doc)
    return _make


@pytest.fixture
def make_user(db):
    def _make(email="ada@example.com", password="s3cret-pass", role="user"):
        return create_document(db, "user", {
            "first_name": "Ada",
            "last_name": "Lovelace",
            "email": email,
            "password_hash": hash_secret(password),
            "role": role,
            "email_verified_at": None,
        })
    return _make


@pytest.fixture
def login_as(client, mailer, make_user):
    """Run the full password + OTP handshake and return bearer headers."""
    def _login(email="ada@example.com", password="s3cret-pass", role="user"):
        make_user(email=email, password=password, role=role)
        res = client.post("/login", json={"email": email, "password": password})
        assert res.status_code == 200
        res = client.post("/verify-otp", json={"email": email, "otp": mailer.last_code(email)})
        assert res.status_code == 200
        return {"Authorization": f"Bearer {res.json()['token']}"}
    return _login


@pytest.fixture
def auth_headers(login_as):
    return login_as()
