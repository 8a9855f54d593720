from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from spendlog.core.settings import Settings
from spendlog.services.extraction import ExtractionError, TransactionExtractor, build_prompt

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeModels:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.requests = []

    async def generate_content(self, model, contents, config):
        self.requests.append({"model": model, "contents": contents, "config": config})
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text)


def _client(models: FakeModels):
    return SimpleNamespace(aio=SimpleNamespace(models=models))


def _extract(extractor: TransactionExtractor):
    return asyncio.run(extractor.extract("lunch at chipotle 12.50", "EUR", NOW))


def test_build_prompt_embeds_hints():
    prompt = build_prompt("lunch 12", "JPY", NOW)
    assert "Preferred currency is JPY." in prompt
    assert "Today's date/time (UTC) is 2024-03-10T12:00:00+00:00." in prompt
    assert prompt.endswith("User text: lunch 12")


def test_extract_returns_validated_object():
    models = FakeModels(
        text=json.dumps(
            {"title": "Chipotle", "amount": 12.5, "currency": "eur", "type": "expense", "category": "Food"}
        )
    )
    extractor = TransactionExtractor("gemini-2.5-flash", _client(models))

    result = _extract(extractor)
    assert result.title == "Chipotle"
    assert result.amount == 12.5
    assert result.currency == "EUR"
    assert result.occurred_at is None
    assert models.requests[0]["model"] == "gemini-2.5-flash"
    assert models.requests[0]["config"].response_mime_type == "application/json"


def test_extract_defaults_currency_to_usd():
    models = FakeModels(text=json.dumps({"title": "Bus", "amount": 2, "type": "expense", "category": "Travel"}))
    result = _extract(TransactionExtractor("gemini-2.5-flash", _client(models)))
    assert result.currency == "USD"


@pytest.mark.parametrize(
    "text",
    [
        json.dumps({"title": "Bus", "amount": 2, "type": "transfer", "category": "Travel"}),
        json.dumps({"title": "", "amount": 2, "type": "expense", "category": "Travel"}),
        json.dumps({"title": "Bus", "amount": "two", "type": "expense", "category": "Travel"}),
        json.dumps({"title": "Bus", "amount": 2, "currency": "EURO", "type": "expense", "category": "Travel"}),
        "not json",
        "",
        None,
    ],
)
def test_extract_rejects_non_conforming_output(text):
    extractor = TransactionExtractor("gemini-2.5-flash", _client(FakeModels(text=text)))
    with pytest.raises(ExtractionError):
        _extract(extractor)


def test_extract_wraps_transport_errors():
    extractor = TransactionExtractor("gemini-2.5-flash", _client(FakeModels(error=RuntimeError("quota exceeded"))))
    with pytest.raises(ExtractionError):
        _extract(extractor)


def test_extractor_without_api_key_fails_closed():
    settings = Settings(_env_file=None, GOOGLE_GENERATIVE_AI_API_KEY="")
    extractor = TransactionExtractor.from_settings(settings)
    assert extractor.client is None
    with pytest.raises(ExtractionError):
        _extract(extractor)
