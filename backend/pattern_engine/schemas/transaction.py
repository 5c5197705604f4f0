"""Transaction record schema (supplied by the host application)."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class TransactionRecord(BaseModel):
    merchant_name: str | None = None
    description: str | None = None
    amount: Decimal
    transaction_date: datetime

    model_config = {"frozen": True}
