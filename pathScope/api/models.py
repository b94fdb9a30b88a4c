"""Shared Pydantic models and response envelopes for the API layer."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class ScoreSummary(BaseModel):
    score: int
    rating: str
    findings: int
    unreachable: int
    domain: Optional[str] = None


def ok(data: object) -> dict:
    return {"status": "ok", "data": data}


def err(detail: str) -> dict:
    return {"status": "error", "detail": detail}
