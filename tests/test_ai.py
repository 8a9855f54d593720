from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import event

from spendlog.models import Transaction
from spendlog.schemas.transactions import ExtractedTransaction
from spendlog.services.extraction import ExtractionError


def _ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)


def test_empty_text_is_rejected_without_calling_model(client, make_user, auth_headers, extractor, db_session):
    user = make_user("alice@example.com")

    response = client.post("/ai", json={"text": "   "}, headers=auth_headers(user))
    assert response.status_code == 400
    assert response.json() == {"error": "Missing text"}
    assert extractor.calls == []
    assert db_session.query(Transaction).count() == 0


def test_missing_text_field_is_rejected(client, make_user, auth_headers, extractor):
    user = make_user("alice@example.com")
    response = client.post("/ai", json={"currency": "EUR"}, headers=auth_headers(user))
    assert response.status_code == 400
    assert extractor.calls == []


def test_extraction_failure_persists_nothing(client, make_user, auth_headers, extractor, db_session):
    user = make_user("alice@example.com")
    extractor.error = ExtractionError("Response does not match the transaction schema")

    response = client.post("/ai", json={"text": "coffee 4 bucks"}, headers=auth_headers(user))
    assert response.status_code == 502
    assert response.json() == {"error": "Failed to extract transaction"}
    assert len(extractor.calls) == 1
    assert db_session.query(Transaction).count() == 0


def test_creates_transaction_from_text(client, make_user, auth_headers, extractor, db_session):
    user = make_user("alice@example.com")
    extractor.result = ExtractedTransaction(
        title="Chipotle",
        amount=12.5,
        currency="eur",
        type="expense",
        category="Food",
    )
    before = datetime.now(timezone.utc) - timedelta(seconds=1)

    response = client.post(
        "/ai",
        json={"text": "  chipotle 12.50 euros  ", "currency": " eur "},
        headers=auth_headers(user),
    )
    assert response.status_code == 200
    body = response.json()

    assert extractor.calls[0]["text"] == "chipotle 12.50 euros"
    assert extractor.calls[0]["currency"] == "EUR"

    assert body["parsed"]["title"] == "Chipotle"
    assert body["parsed"]["currency"] == "EUR"
    tx = body["transaction"]
    assert tx["userId"] == user.id
    assert tx["amount"] == "12.5"
    assert tx["currency"] == "EUR"
    assert tx["type"] == "expense"
    assert tx["category"] == "Food"
    assert tx["note"] is None
    assert _ts(tx["occurredAt"]) >= before

    stored = db_session.get(Transaction, tx["id"])
    assert stored is not None
    assert stored.user_id == user.id


def test_uses_extracted_occurred_at_and_default_currency(client, make_user, auth_headers, extractor):
    user = make_user("alice@example.com")
    extractor.result = ExtractedTransaction.model_validate(
        {
            "title": "Salary",
            "amount": 3000,
            "type": "income",
            "category": "Work",
            "note": "March payroll",
            "occurredAt": "2024-03-01T09:00:00Z",
        }
    )

    response = client.post("/ai", json={"text": "got paid 3000 on march 1"}, headers=auth_headers(user))
    assert response.status_code == 200
    assert extractor.calls[0]["currency"] == "USD"

    tx = response.json()["transaction"]
    assert tx["currency"] == "USD"
    assert tx["note"] == "March payroll"
    assert tx["type"] == "income"
    assert _ts(tx["occurredAt"]) == datetime(2024, 3, 1, 9, tzinfo=timezone.utc)


def test_persistence_runs_off_the_event_loop(client, make_user, auth_headers, extractor, session_factory):
    user = make_user("alice@example.com")
    headers = auth_headers(user)
    extractor.result = ExtractedTransaction(title="Taxi", amount=20, type="expense", category="Travel")
    commit_threads = []

    def record_commit(session):
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            commit_threads.append("worker")
        else:
            commit_threads.append("event loop")

    event.listen(session_factory, "after_commit", record_commit)
    try:
        response = client.post("/ai", json={"text": "taxi 20"}, headers=headers)
    finally:
        event.remove(session_factory, "after_commit", record_commit)

    assert response.status_code == 200
    assert commit_threads
    assert "event loop" not in commit_threads
