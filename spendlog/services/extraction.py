from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from google import genai
from google.genai import types
from pydantic import ValidationError

from spendlog.core.settings import Settings
from spendlog.schemas.transactions import ExtractedTransaction

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    """The model could not produce a schema-conforming transaction."""


# --- Response schema handed to Gemini ---
RESPONSE_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "title": types.Schema(type=types.Type.STRING, description="Short label like 'Chipotle' or 'Salary'"),
        "amount": types.Schema(type=types.Type.NUMBER),
        "currency": types.Schema(type=types.Type.STRING, description="3-letter ISO 4217 code"),
        "type": types.Schema(type=types.Type.STRING, enum=["income", "expense"]),
        "category": types.Schema(type=types.Type.STRING),
        "note": types.Schema(type=types.Type.STRING),
        "occurredAt": types.Schema(type=types.Type.STRING, description="ISO 8601 date-time"),
    },
    required=["title", "amount", "currency", "type", "category"],
)


def build_prompt(text: str, preferred_currency: str, now: datetime) -> str:
    return "\n".join(
        [
            "Extract a transaction from the user text.",
            "Return a JSON object matching the schema.",
            f"Preferred currency is {preferred_currency}.",
            "If currency is not specified, use the preferred currency.",
            f"Today's date/time (UTC) is {now.isoformat()}.",
            "If date/time isn't specified, omit occurredAt.",
            "Title should be a short label like 'Chipotle' or 'Salary'.",
            f"User text: {text}",
        ]
    )


class TransactionExtractor:
    def __init__(self, model_name: str, client: Optional[Any] = None):
        self.model_name = model_name
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "TransactionExtractor":
        if not settings.GOOGLE_GENERATIVE_AI_API_KEY:
            logger.warning("GOOGLE_GENERATIVE_AI_API_KEY is not set; POST /ai will fail")
            return cls(settings.GEMINI_MODEL)
        return cls(settings.GEMINI_MODEL, genai.Client(api_key=settings.GOOGLE_GENERATIVE_AI_API_KEY))

    async def extract(self, text: str, preferred_currency: str, now: datetime) -> ExtractedTransaction:
        if self.client is None:
            raise ExtractionError("Extraction client is not configured")

        prompt = build_prompt(text, preferred_currency, now)
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model_name,
                contents=prompt,
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=RESPONSE_SCHEMA,
                    temperature=0,
                ),
            )
            raw = response.text
        except Exception as exc:
            logger.error(f"Gemini extraction error: {exc}")
            raise ExtractionError("Generation request failed") from exc

        if not raw:
            logger.error("Gemini returned an empty response")
            raise ExtractionError("Empty response")

        try:
            return ExtractedTransaction.model_validate_json(raw)
        except ValidationError as exc:
            logger.error(f"Gemini returned a non-conforming object: {exc.errors(include_url=False)}")
            raise ExtractionError("Response does not match the transaction schema") from exc
