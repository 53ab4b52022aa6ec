import pytest

from app import create_app
from models import db
from models.user import User
from security.password import hash_password

TEST_KEY_HEX = "00112233445566778899aabbccddeeff" * 2


class FakeClock:
    """Manually advanced clock for the session store and rate limiter."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, delta):
        self.now = self.now + delta


class FakeTransport:
    def __init__(self, fail=False):
        self.writes = []
        self.closed = False
        self.fail = fail

    def write(self, data):
        if self.fail:
            raise BrokenPipeError("socket is gone")
        self.writes.append(bytes(data))

    def close(self):
        self.closed = True


@pytest.fixture()
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "SECRET_KEY": "test-secret",
        "BCRYPT_ROUNDS": 4,
        "ENCRYPTION_KEY": TEST_KEY_HEX,
        "SECURITY_LOG_PATH": str(tmp_path / "security.log"),
        "SESSION_SWEEP_ENABLED": False,
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def security_log(app):
    def _read():
        with open(app.config["SECURITY_LOG_PATH"], encoding="utf-8") as fh:
            return fh.read().splitlines()
    return _read


@pytest.fixture()
def make_user(app):
    def _make(username, password="secret123", password_hash=None, **flags):
        user = User(
            username=username,
            display_name=flags.pop("display_name", username.title()),
            email=flags.pop("email", f"{username}@example.com"),
            password_hash=password_hash or hash_password(password, rounds=4),
            **flags,
        )
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture()
def login(client):
    def _login(username, password="secret123"):
        resp = client.post("/api/login", json={"username": username, "password": password})
        assert resp.status_code == 200, resp.get_json()
        return resp.get_json()["token"]
    return _login


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
