from __future__ import annotations

from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from spendlog.core.settings import get_settings
from spendlog.models import Base

PROJECT_ROOT = Path(__file__).resolve().parents[1]
EXPECTED_TABLES = {"user", "session", "account", "verification", "transaction"}
EXPECTED_INDEXES = {
    "session": {"session_userId_idx"},
    "account": {"account_userId_idx"},
    "verification": {"verification_identifier_idx"},
    "transaction": {"transaction_userId_idx", "transaction_occurredAt_idx"},
}


def _assert_schema(engine):
    inspector = inspect(engine)
    assert EXPECTED_TABLES <= set(inspector.get_table_names())
    for table, indexes in EXPECTED_INDEXES.items():
        assert indexes <= {ix["name"] for ix in inspector.get_indexes(table)}


def test_root_and_healthz(client):
    root = client.get("/")
    assert root.status_code == 200
    assert root.text == "OK"
    assert client.get("/healthz").json() == {"status": "ok"}


def test_cors_allows_configured_origin_with_credentials(client):
    response = client.options(
        "/transactions",
        headers={
            "Origin": get_settings().CORS_ORIGIN,
            "Access-Control-Request-Method": "PUT",
            "Access-Control-Request-Headers": "Authorization",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == get_settings().CORS_ORIGIN
    assert response.headers["access-control-allow-credentials"] == "true"


def test_unknown_route_uses_error_shape(client):
    response = client.get("/nope")
    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}


def test_migrate_provisions_schema_idempotently(client, engine):
    Base.metadata.drop_all(bind=engine)

    first = client.post("/api/migrate")
    assert first.status_code == 200
    assert first.json() == {"message": "Migrations completed"}
    _assert_schema(engine)

    second = client.post("/api/migrate")
    assert second.status_code == 200


def test_migrate_requires_token_when_configured(client, settings):
    settings.MIGRATE_TOKEN = "ops-only"

    assert client.post("/api/migrate").status_code == 401
    assert client.post("/api/migrate", headers={"X-Migrate-Token": "wrong"}).status_code == 401
    assert client.post("/api/migrate", headers={"X-Migrate-Token": "ops-only"}).status_code == 200


def test_storage_rejects_unknown_transaction_type(db_session, make_user):
    from sqlalchemy.exc import IntegrityError

    from spendlog.models import Transaction

    user = make_user("alice@example.com")
    db_session.add(Transaction(user_id=user.id, title="Bad", amount="1", currency="USD", type="transfer"))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_alembic_upgrade_and_downgrade(tmp_path):
    url = f"sqlite:///{tmp_path / 'alembic.db'}"
    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", url)

    command.upgrade(config, "head")
    engine = create_engine(url)
    try:
        _assert_schema(engine)
        command.downgrade(config, "base")
        assert not EXPECTED_TABLES & set(inspect(engine).get_table_names())
    finally:
        engine.dispose()


def test_openapi_documents_error_shape_and_offset_sign(client):
    schema = client.get("/openapi.json").json()
    assert schema["components"]["schemas"]["ErrorResponse"]["required"] == ["error"]

    list_op = schema["paths"]["/transactions"]["get"]
    assert list_op["responses"]["401"]["content"]["application/json"]["schema"] == {
        "$ref": "#/components/schemas/ErrorResponse"
    }
    tz_param = next(p for p in list_op["parameters"] if p["name"] == "tzOffset")
    assert "-300" in tz_param["description"]
    assert "getTimezoneOffset" in tz_param["description"]

    ai_op = schema["paths"]["/ai"]["post"]
    assert "502" in ai_op["responses"]
