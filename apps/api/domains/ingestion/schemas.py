"""Pydantic schemas for the ingestion domain."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class TransactionOut(BaseModel):
    """One normalized transaction. Positive amount = income, negative = expense."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    date: str
    index: int
    amount: float
    type: str  # "income" or "expense", derived from the sign of amount
    category: str = "Other"
    account: str = ""
    note: str = ""
    tags: str = ""
    currency: Optional[str] = None
    original_amount: Optional[float] = Field(default=None, alias="originalAmount")
    original_currency: Optional[str] = Field(default=None, alias="originalCurrency")


class IngestResponse(BaseModel):
    """Response from statement ingestion. Transactions are in file order."""

    transactions: list[TransactionOut]
    count: int
    skipped_rows: int = 0
    conflicts: int = 0
    sheet_name: Optional[str] = None
    header_row: int = 0
    sheet_names: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class IngestTaskAccepted(BaseModel):
    task_id: str
    status: str = "queued"


class IngestTaskStatus(BaseModel):
    """State of a queued parse. ``result`` holds the IngestResponse payload once done."""

    task_id: str
    status: str
    result: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
