import os


def _set_test_env() -> None:
    defaults = {
        "APP_NAME": "Movie Payments Test",
        "ENVIRONMENT": "test",
        "SECRET_KEY": "test-secret-key-with-enough-length-for-hs256",
        "ACCESS_TOKEN_EXPIRE_MINUTES": "30",
        "DATABASE_URL": "sqlite://",
        "AUTO_CREATE_TABLES": "true",
        "RATE_LIMIT_ENABLED": "false",
        "FASTLIPA_BASE_URL": "https://api.fastlipa.test/api",
        "FASTLIPA_API_KEY": "fl_test_key",
        "FASTLIPA_TIMEOUT_SECONDS": "5",
        "FASTLIPA_RETRY_COUNT": "0",
        "FASTLIPA_TEST_MODE": "false",
        "TOPUP_MIN_AMOUNT": "500",
        "SUBSCRIPTION_DEFAULT_PRICE": "5000",
        "SUBSCRIPTION_PERIOD_DAYS": "30",
        "RECONCILE_POLL_INTERVAL_SECONDS": "5",
        "RECONCILE_MAX_ATTEMPTS": "24",
        "RECONCILE_RESUME_ON_STARTUP": "false",
        "CORS_ORIGINS": "http://localhost:5173,http://localhost:8080",
    }
    for key, value in defaults.items():
        os.environ.setdefault(key, value)


_set_test_env()


import pytest  # noqa: E402

from app.core.database import Base, SessionLocal, engine  # noqa: E402
from app.models import User, UserRole  # noqa: E402
from app.services.fastlipa import ChargeResult, FastlipaApiError, StatusResult  # noqa: E402


class FakeGateway:
    """In-process stand-in for FastlipaClient.

    ``statuses`` is consumed one per ``get_status`` call; the last entry repeats.
    Exception instances in the list are raised instead of returned.
    """

    def __init__(self, statuses=None, *, create_error: Exception | None = None, reference_prefix: str = "FL-REF"):
        self.statuses = list(statuses or ["pending"])
        self.create_error = create_error
        self.reference_prefix = reference_prefix
        self.charges: list[dict] = []
        self.status_calls: list[str] = []

    def create_charge(self, phone, amount, name):
        if self.create_error is not None:
            raise self.create_error
        self.charges.append({"phone": phone, "amount": amount, "name": name})
        return ChargeResult(reference=f"{self.reference_prefix}-{len(self.charges)}", raw={"status": "pending"})

    def get_status(self, reference):
        self.status_calls.append(reference)
        value = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(value, Exception):
            raise value
        return StatusResult(raw_status=value, payload={"status": value})

    def get_balance(self):
        return {"balance": 125000, "currency": "TZS"}


class RecordingScheduler:
    def __init__(self):
        self.submitted: list[str] = []

    def submit(self, reference):
        self.submitted.append(reference)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role: UserRole = UserRole.USER, phone: str | None = "0712345678") -> User:
        counter["n"] += 1
        user = User(
            email=f"user{counter['n']}@example.com",
            full_name=f"User {counter['n']}",
            phone=phone,
            role=role,
            is_active=True,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def fake_gateway():
    return FakeGateway


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def gateway_error():
    return FastlipaApiError


@pytest.fixture
def test_settings():
    from app.core.config import get_settings

    def _make(**overrides):
        return get_settings().model_copy(update=overrides)

    return _make


@pytest.fixture
def sleeps():
    calls: list[float] = []

    def _sleep(seconds):
        calls.append(seconds)

    _sleep.calls = calls
    return _sleep
