from __future__ import annotations

"""Schema constants and Pydantic models for the Parquet-backed attempt history."""

from datetime import datetime, timezone

import pandas as pd
from pydantic import BaseModel, Field, ValidationInfo, field_validator

# --- Constants ---

DEFAULT_CATEGORY = "general"

DTYPES = {
    "attempt_key": "string",
    "username": "string",
    "test_id": "string",
    # timezone-aware UTC timestamps
    "completed_at": pd.DatetimeTZDtype(tz="UTC"),
    "attempt_number": "UInt16",
    "category": "string",
    "Q": "UInt16",
    "C": "UInt16",
    "score": "float32",
    "passed": "boolean",
    "T_s": "UInt32",
}


# --- Pydantic models ---

class AttemptCategoryRow(BaseModel):
    """One (attempt x category) summary row."""

    attempt_key: str = Field(min_length=1)
    username: str
    test_id: str = Field(min_length=1)
    completed_at: datetime
    attempt_number: int = Field(ge=0, le=65535)
    category: str = Field(default=DEFAULT_CATEGORY, min_length=1)
    Q: int = Field(ge=1, le=65535)
    C: int = Field(ge=0, le=65535)
    score: float = Field(ge=0.0, le=1.0)
    passed: bool = False
    T_s: int = Field(default=0, ge=0, le=4294967295)

    @field_validator("C")
    @classmethod
    def _c_le_q(cls, v: int, info: ValidationInfo) -> int:
        q = int(info.data.get("Q", 0))
        if v > q:
            raise ValueError("C must be <= Q")
        return v

    @field_validator("completed_at")
    @classmethod
    def _ensure_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)
