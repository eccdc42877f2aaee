"""
Shared pytest fixtures for the forms portal test suite.

IMPORTANT: FORMS_DATA_DIR / JWT_SECRET are set BEFORE any src import, so the
module-level path resolution and app creation never touch the real data dir.
"""
import os
import sys
import tempfile
import pytest

_PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

os.environ.setdefault("FORMS_DATA_DIR", tempfile.mkdtemp(prefix="forms_portal_test_"))
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-0123456789abcdef")
os.environ["DISABLE_RATE_LIMIT"] = "true"

# 8-byte PNG signature plus padding: enough for MIMEImage to sniff image/png
FAKE_PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24


# ── Temp database (per-test isolation) ────────────────────────────────────────

@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    """Point the store at a fresh sqlite file and create the schema."""
    from src.core import db
    path = str(tmp_path / "forms_portal.db")
    monkeypatch.setattr(db, "DB_PATH", path)
    monkeypatch.setenv("JWT_SECRET", "test-jwt-secret-0123456789abcdef")
    monkeypatch.setenv("DISABLE_RATE_LIMIT", "true")
    monkeypatch.delenv("FORMS_EDIT_POLICY", raising=False)
    monkeypatch.delenv("APPROVER_ROLES", raising=False)
    db.init_db()
    return path


@pytest.fixture(autouse=True)
def no_logo_fetch(monkeypatch):
    """Never hit LOGO_URL from tests; the logo cache is pre-filled."""
    from src.agents import notify_agent
    monkeypatch.setitem(notify_agent._logo_cache, "bytes", FAKE_PNG)


# ── Fake SMTP ─────────────────────────────────────────────────────────────────

class FakeSMTP:
    """Stands in for smtplib.SMTP / SMTP_SSL; records every message sent."""
    sent = []
    fail_with = None

    def __init__(self, host, port, timeout=None):
        self.host, self.port = host, port
        self.started_tls = False
        self.logged_in = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.started_tls = True

    def login(self, user, password):
        self.logged_in = (user, password)

    def send_message(self, msg):
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        FakeSMTP.sent.append({"msg": msg, "host": self.host, "port": self.port,
                              "tls": self.started_tls, "login": self.logged_in})


@pytest.fixture
def smtp(monkeypatch):
    """Configure SMTP env and capture outgoing mail. Returns the sent list."""
    import smtplib
    monkeypatch.setenv("SMTP_HOST", "smtp.test.local")
    monkeypatch.setenv("SMTP_PORT", "587")
    monkeypatch.setenv("SMTP_USER", "forms@newlywedsfoods.co.th")
    monkeypatch.setenv("SMTP_PASSWORD", "smtp-password")
    monkeypatch.setattr(FakeSMTP, "sent", [])
    monkeypatch.setattr(FakeSMTP, "fail_with", None)
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    monkeypatch.setattr(smtplib, "SMTP_SSL", FakeSMTP)
    return FakeSMTP.sent


# ── Fake directory ────────────────────────────────────────────────────────────

class FakeDirectory:
    """In-memory DirectoryClient: {principal: (password, profile)}."""
    def __init__(self, accounts=None):
        self.accounts = accounts or {}
        self.binds = []

    def authenticate(self, principal, secret):
        self.binds.append(principal)
        entry = self.accounts.get(principal)
        return bool(secret) and entry is not None and entry[0] == secret

    def find_user(self, principal):
        entry = self.accounts.get(principal)
        return entry[1] if entry else None


@pytest.fixture
def fake_directory():
    return FakeDirectory({
        "somchai.k@newlywedsfoods.co.th": ("dir-pass", {
            "email": "somchai.k@newlywedsfoods.co.th",
            "name": "Somchai K",
            "department": "Engineering",
        }),
        "ghost@newlywedsfoods.co.th": ("ghost-pass", None),
    })


# ── Users ─────────────────────────────────────────────────────────────────────

def _make_user(email, name, role="user", password="Passw0rd!", department="Finance"):
    from src.auth.tokens import hash_password
    from src.core import db
    user_id = db.create_user(email, name, department, hash_password(password), role=role)
    return {"id": user_id, "email": email, "name": name, "role": role,
            "department": department, "password": password}


@pytest.fixture
def user():
    return _make_user("nok@newlywedsfoods.co.th", "Nok Pimchanok")


@pytest.fixture
def admin_user():
    return _make_user("admin@newlywedsfoods.co.th", "Portal Admin", role="admin", department="IT")


@pytest.fixture
def manager_user():
    return _make_user("manager@newlywedsfoods.co.th", "Line Manager", role="manager")


def bearer_for(account) -> dict:
    from src.auth.tokens import issue_session_token
    return {"Authorization": f"Bearer {issue_session_token(account)}"}


# ── Flask test client ─────────────────────────────────────────────────────────

class AuthenticatedClient:
    """Wraps Flask test client to add a Bearer token to every request."""
    def __init__(self, client, headers):
        self._client = client
        self._headers = headers

    def get(self, *args, **kwargs):
        kwargs.setdefault("headers", {}).update(self._headers)
        return self._client.get(*args, **kwargs)

    def post(self, *args, **kwargs):
        kwargs.setdefault("headers", {}).update(self._headers)
        return self._client.post(*args, **kwargs)

    def put(self, *args, **kwargs):
        kwargs.setdefault("headers", {}).update(self._headers)
        return self._client.put(*args, **kwargs)

    def delete(self, *args, **kwargs):
        kwargs.setdefault("headers", {}).update(self._headers)
        return self._client.delete(*args, **kwargs)


@pytest.fixture
def app(temp_db):
    """Create Flask app configured for testing."""
    from app import create_app
    flask_app = create_app()
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app, user):
    """Client authenticated as a regular user."""
    yield AuthenticatedClient(app.test_client(), bearer_for(user))


@pytest.fixture
def admin_client(app, admin_user):
    """Client authenticated as an admin."""
    yield AuthenticatedClient(app.test_client(), bearer_for(admin_user))


@pytest.fixture
def anon_client(app):
    """Unauthenticated test client."""
    yield app.test_client()


# ── Sample details payloads ───────────────────────────────────────────────────

@pytest.fixture
def sample_purchase_request():
    """Grand total 620.00 (2 × 10 + 5 × 120), no stored subTotal/grandTotal."""
    return {
        "name": "Nok Pimchanok",
        "email": "nok@newlywedsfoods.co.th",
        "department": "Finance",
        "date": "2025-03-14",
        "currency": "THB",
        "deliveryDate": "2025-03-28",
        "vendorName": "Office Mate",
        "vendorAddress": "123 Sukhumvit Rd",
        "CountryZip": "Thailand 10110",
        "items": [
            {"description": "Pen", "quantity": 2, "cost": 10},
            {"description": "A4 Paper", "quantity": 5, "cost": 120},
        ],
        "reasonType": "Replacement",
        "remarks": "Quarterly restock",
    }


@pytest.fixture
def sample_travel_request():
    """Estimated cost 40,000.00 from its parts."""
    return {
        "name": "Somchai K",
        "email": "somchai.k@newlywedsfoods.co.th",
        "department": "Sales",
        "requestDate": "2025-05-02",
        "businessPurpose": "Customer visit",
        "currency": "THB",
        "trips": [
            {"from": "Bangkok", "to": "Sydney", "departureDate": "2025-06-01",
             "returnDate": "2025-06-05", "roundTrip": True, "tripClass": "Economy",
             "airline": "Thai Airways", "includeHotel": True},
        ],
        "estimatedCost": {"airfare": 25000, "accommodations": 12000, "mealsEntertainment": 3000},
    }


@pytest.fixture
def sample_major_capital():
    """Addition 175,000 + disposal 10,000 via the section ledgers."""
    return {
        "name": "Plant Engineer",
        "department": "Engineering",
        "date": "2025-01-20",
        "operatingCompany": "NWF Thailand",
        "projectDescription": "Spray dryer upgrade",
        "authorizationType": {"expansion": True, "replacement": True},
        "additionSection": {
            "capitalAddition": {"previouslyApproved": 0, "thisRequest": 150000},
            "capitalRelatedExpense": {"previouslyApproved": 0, "thisRequest": 25000},
        },
        "disposalSection": {
            "capitalDisposal": {"previouslyApproved": 0, "thisRequest": 10000},
        },
    }


@pytest.fixture
def sample_minor_capital():
    """totals.total = 500 wins over the stale item sum of 300."""
    return {
        "name": "QA Lead",
        "department": "Quality",
        "date": "2025-02-10",
        "purpose": {"qualityImprovement": True},
        "items": [{"description": "pH meter", "capital": 300, "total": 300}],
        "totals": {"total": 500},
    }
