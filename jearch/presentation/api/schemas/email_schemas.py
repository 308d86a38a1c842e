from __future__ import annotations

from pydantic import BaseModel, Field


class EmailCancelPayload(BaseModel):
    reason: str = Field(default="cancelled by operator", min_length=1, max_length=200)
