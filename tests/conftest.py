"""Shared fixtures: a file-backed SQLite database per test, fake S3, HS256 tokens."""

import threading
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

from communityeats.core import clock
from communityeats.core import listing as listings
from communityeats.core.config import Settings
from communityeats.core.user import upsert_user
from communityeats.infra.database import Database
from communityeats.infra.s3 import ImageBucket
from communityeats.main import create_app

SECRET = "test-secret"
ADMIN_EMAIL = "boss@example.com"


class FakeS3Client:
    """Stands in for a boto3 S3 client; records puts and deletes."""

    def __init__(self):
        self.objects = {}
        self.deleted = []
        self.fail_delete = set()

    def put_object(self, Bucket, Key, Body, **kwargs):
        self.objects[(Bucket, Key)] = Body

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        return f"https://{Params['Bucket']}.s3.example/{Params['Key']}?expires={ExpiresIn}"

    def delete_object(self, Bucket, Key):
        if Key in self.fail_delete:
            raise RuntimeError("storage unavailable")
        self.deleted.append(Key)
        self.objects.pop((Bucket, Key), None)


class FakeClock:
    """Returns a fixed start time, advancing by ``step`` on every call."""

    def __init__(self, start: datetime, step: timedelta = timedelta(milliseconds=1)):
        self.current = start
        self.step = step
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            value = self.current
            self.current = self.current + self.step
            return value


def make_token(uid: str, **claims) -> str:
    return jwt.encode({"sub": uid, **claims}, SECRET, algorithm="HS256")


def auth(uid: str, **claims) -> dict:
    return {"Authorization": f"Bearer {make_token(uid, **claims)}"}


@pytest.fixture(autouse=True)
def fake_clock(monkeypatch) -> FakeClock:
    fake = FakeClock(datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc))
    monkeypatch.setattr(clock, "now", fake)
    return fake


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'communityeats.db'}",
        jwt_secret=SECRET,
        admin_email_allowlist=[ADMIN_EMAIL],
        rate_limit_enabled=False,
        stream_poll_interval=0.05,
        log_level="WARNING",
    )


@pytest.fixture
def database(settings: Settings):
    database = Database(settings.database_url)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def db(database: Database):
    session = database.SessionLocal()
    yield session
    session.close()


@pytest.fixture
def s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def bucket(settings: Settings, s3: FakeS3Client) -> ImageBucket:
    return ImageBucket(s3, settings.storage_bucket, settings.signed_url_ttl_seconds)


@pytest.fixture
def app(settings, database, bucket):
    return create_app(settings, database=database, image_bucket=bucket)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def make_user(db):
    def _make(uid: str, name: str = None, email: str = None):
        user, _ = upsert_user(db, uid, name or uid.title(), email or f"{uid}@example.com")
        return user
    return _make


@pytest.fixture
def make_listing(db):
    def _make(owner: str, title: str = "Fresh sourdough loaves", **overrides):
        data = {
            "title": title,
            "description": "Two loaves baked this morning",
            "category": "share",
            "exchange_type": "gift",
            "image_ids": ["img-1", "img-2"],
            "thumbnail_id": "img-1",
            "terms_accepted": True,
            "country": "Australia",
            "state": "VIC",
            "suburb": "Fitzroy",
            "postcode": "3065",
        }
        data.update(overrides)
        return listings.create_listing(db, owner, data)
    return _make


@pytest.fixture
def listing_with_interest(db, make_user, make_listing):
    """Owner u1 with listing, u2 registered interest, u3 a bystander."""
    make_user("u1", "Olive Owner")
    make_user("u2", "Ian Interested")
    make_user("u3", "Sam Stranger")
    listing = make_listing("u1")
    listings.register_interest(db, listing.id, "u2")
    return listing
