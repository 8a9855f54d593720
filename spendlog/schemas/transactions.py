from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import Field, field_validator

from spendlog.schemas.common import CamelModel


class TransactionPayload(CamelModel):
    """Body of POST /transactions and PUT /transactions/{id}.

    Every field is optional at the boundary so that missing values surface as
    "Invalid payload" from the handler rather than a framework error shape.
    """

    title: Optional[str] = None
    amount: Optional[Union[str, int, float]] = None
    currency: Optional[str] = None
    type: Optional[str] = None
    category: Optional[str] = None
    note: Optional[str] = None
    occurred_at: Optional[str] = None


class TransactionOut(CamelModel):
    id: str
    user_id: str
    title: str
    amount: str
    currency: str
    type: str
    category: Optional[str] = None
    note: Optional[str] = None
    occurred_at: datetime
    created_at: datetime
    updated_at: datetime


class TransactionResponse(CamelModel):
    transaction: TransactionOut


class TransactionListResponse(CamelModel):
    transactions: List[TransactionOut]


class ExtractedTransaction(CamelModel):
    title: str = Field(..., min_length=1)
    amount: float
    currency: str = Field("USD", min_length=3, max_length=3)
    type: Literal["income", "expense"]
    category: str
    note: Optional[str] = None
    occurred_at: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: str) -> str:
        return value.upper()


class AiRequest(CamelModel):
    text: Optional[str] = None
    currency: Optional[str] = None


class AiResponse(CamelModel):
    parsed: ExtractedTransaction
    transaction: TransactionOut
