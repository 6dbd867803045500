import pytest

from api import create_app
from models import DBStorage, Role, User
from models.seed import seed_catalogue
from services.auth import AuthService
from services.errors import ExternalServiceFailure
from services.mailer import Mailer
from services.oauth import OAuthService
from services.tokens import TokenService, TokenSettings
from services.users import UserDirectory
from utils.security import hash_password

ACCESS_SECRET = "test-access-secret-0123456789abcdef0123"
REFRESH_SECRET = "test-refresh-secret-0123456789abcdef012"
PASSWORD = "Str0ng!Pass"
CLIENT_URL = "http://client.test"


class RecordingMailer(Mailer):
    """Renders the real templates but keeps messages in memory."""

    def __init__(self):
        super().__init__(client_url=CLIENT_URL)
        self.sent = []
        self.fail = False

    def send(self, to, subject, html_body, text_body=None):
        if self.fail:
            raise ExternalServiceFailure("Failed to send email", service="email")
        self.sent.append({"to": to, "subject": subject, "html": html_body, "text": text_body})

    def subjects(self, to):
        return [m["subject"] for m in self.sent if m["to"] == to]


@pytest.fixture
def storage():
    storage = DBStorage("sqlite://")
    storage.reload()
    yield storage
    storage.dispose()


@pytest.fixture
def roles(storage):
    return seed_catalogue(storage)


@pytest.fixture
def settings():
    return TokenSettings(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET)


@pytest.fixture
def tokens(storage, settings):
    return TokenService(storage, settings)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def auth(storage, tokens, mailer, roles):
    return AuthService(storage, tokens, mailer, protected_emails=["admin@example.com"])


@pytest.fixture
def oauth(storage, tokens, roles):
    return OAuthService(storage, tokens)


@pytest.fixture
def directory(storage, tokens, roles):
    return UserDirectory(storage, tokens)


@pytest.fixture
def make_user(storage, roles):
    """Insert an account directly (verified and active unless told otherwise)."""

    def _make(email="alice@example.com", password=PASSWORD, role_names=("user",),
              verified=True, active=True, **extra):
        with storage.transaction() as session:
            user = User(
                email=email,
                password_hash=hash_password(password) if password else None,
                first_name=extra.pop("first_name", "Alice"),
                is_active=active,
                email_verified=verified,
                **extra,
            )
            user.roles = session.query(Role).filter(Role.name.in_(role_names)).all()
            session.add(user)
        return user

    return _make


@pytest.fixture
def providers():
    return {}


@pytest.fixture
def app(storage, mailer, roles, providers):
    app = create_app(
        "testing",
        overrides={"CLIENT_URL": CLIENT_URL, "REFRESH_COOKIE_SECURE": False},
        storage=storage,
        mailer=mailer,
        providers=providers,
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def bearer(access_token):
    return {"Authorization": f"Bearer {access_token}"}


def api_login(client, email, password=PASSWORD):
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()["data"]["access_token"]
