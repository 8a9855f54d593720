from __future__ import annotations

import os
from datetime import datetime
from typing import Optional

# Keep the import-time engine off the filesystem
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from spendlog.core.settings import Settings, get_settings
from spendlog.db import get_db
from spendlog.deps import get_extractor
from spendlog.main import app
from spendlog.models import Base, Transaction, User
from spendlog.schemas.transactions import ExtractedTransaction
from spendlog.services import identity
from spendlog.services.extraction import ExtractionError


class FakeExtractor:
    def __init__(self):
        self.calls = []
        self.result: Optional[ExtractedTransaction] = None
        self.error: Optional[Exception] = None

    async def extract(self, text, preferred_currency, now):
        self.calls.append({"text": text, "currency": preferred_currency, "now": now})
        if self.error is not None:
            raise self.error
        if self.result is None:
            raise ExtractionError("no result configured")
        return self.result


@pytest.fixture()
def settings():
    return Settings(
        _env_file=None,
        AUTH_SECRET="test-secret-with-enough-length-for-hs256",
        AUTH_BASE_URL="http://testserver",
        CORS_ORIGIN="http://localhost:3000",
        GOOGLE_CLIENT_ID="test-client-id.apps.googleusercontent.com",
        GOOGLE_CLIENT_SECRET="test-client-secret",
        MIGRATE_TOKEN="",
    )


@pytest.fixture()
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def db_session(session_factory):
    session: Session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def extractor():
    return FakeExtractor()


@pytest.fixture()
def client(session_factory, settings, extractor):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_extractor] = lambda: extractor
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db_session):
    def _make_user(email: str, name: str = "Test User") -> User:
        user = User(name=name, email=email)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def auth_headers(db_session, settings):
    def _auth_headers(user: User) -> dict:
        session = identity.create_session(db_session, settings, user)
        db_session.commit()
        return {"Authorization": f"Bearer {session.token}"}

    return _auth_headers


@pytest.fixture()
def add_transaction(db_session):
    def _add_transaction(user: User, title: str, occurred_at: datetime, amount: str = "10.00", **extra) -> Transaction:
        tx = Transaction(
            user_id=user.id,
            title=title,
            amount=amount,
            currency=extra.pop("currency", "USD"),
            type=extra.pop("type", "expense"),
            occurred_at=occurred_at,
            **extra,
        )
        db_session.add(tx)
        db_session.commit()
        db_session.refresh(tx)
        return tx

    return _add_transaction
