import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("INGEST_RETRY_WORKER_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  registers tables on Base.metadata
from app.config import settings
from app.database import Base, get_db
from app.models import Clinic, Contact, Conversation


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite: each session gets its own connection and locks are real."""
    engine = create_engine(f"sqlite:///{tmp_path / 'inbox.db'}", connect_args={"timeout": 1})
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    """Real session on an in-memory SQLite database."""
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clinic(db):
    clinic = Clinic(slug="audicare", name="Audicare", instance_id="inst-1", webhook_secret="s3cret")
    db.add(clinic)
    db.commit()
    return clinic


@pytest.fixture
def contact(db, clinic):
    contact = Contact(clinic_id=clinic.id, phone="11988887777", name="Maria")
    db.add(contact)
    db.commit()
    return contact


@pytest.fixture
def conversation(db, clinic, contact):
    conversation = Conversation(clinic_id=clinic.id, contact_id=contact.id, status="open", unread_count=0)
    db.add(conversation)
    db.commit()
    return conversation


@pytest.fixture(autouse=True)
def media_dir(tmp_path, monkeypatch):
    """Keep relocated media out of the real storage dir."""
    storage = tmp_path / "media"
    monkeypatch.setattr(settings, "media_storage_dir", str(storage))
    monkeypatch.setattr(settings, "public_base_url", "https://inbox.test")
    return storage


@pytest.fixture
def client(engine):
    from app.main import app

    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def _override_get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_delivery():
    """Factory for a ``messages`` webhook body in the provider's shape."""

    def _make(**message_fields):
        message = {
            "id": "ABC123",
            "sender": "5511988887777@s.whatsapp.net",
            "text": "Olá, gostaria de marcar consulta",
            "senderName": "Maria",
            "fromMe": False,
        }
        message.update(message_fields)
        return {"EventType": "messages", "message": message}

    return _make
