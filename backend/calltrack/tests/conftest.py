import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["PUBLISH_EVENTS"] = "false"
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["TWILIO_AUTH_TOKEN"] = ""
os.environ["DB_CONNECT_ATTEMPTS"] = "1"

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from calltrack.core.database import Base, SessionLocal, engine
from calltrack.core.security import create_access_token
from calltrack.main import app
from calltrack.models import CallRecord, utcnow
from calltrack.services.store import CallStore


@pytest.fixture(scope="session", autouse=True)
def setup_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_calls():
    yield
    db = SessionLocal()
    try:
        db.query(CallRecord).delete()
        db.commit()
    finally:
        db.close()


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def store(db):
    return CallStore(db)


@pytest.fixture()
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def admin_headers():
    return {"Authorization": f"Bearer {create_access_token('tester', role='ADMIN')}"}


def backdate(provider_call_id: str, seconds: int) -> None:
    db = SessionLocal()
    try:
        db.query(CallRecord).filter(CallRecord.provider_call_id == provider_call_id).update(
            {"updated_at": utcnow() - timedelta(seconds=seconds)}
        )
        db.commit()
    finally:
        db.close()


def fetch(provider_call_id: str) -> CallRecord:
    db = SessionLocal()
    try:
        return CallStore(db).get(provider_call_id)
    finally:
        db.close()
