"""
Results of transaction submissions.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class BroadcastAttempt(BaseModel):
    """Outcome of submitting one raw tx to one endpoint."""

    endpoint_index: int
    endpoint: str = ""
    success: bool = False
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    elapsed_ms: float = 0.0


class PendingBroadcast(BaseModel):
    """One broadcast race. Lives only while the race is running."""

    raw_tx: str
    attempts: List[BroadcastAttempt] = Field(default_factory=list)

    @property
    def accepted(self) -> int:
        return sum(1 for a in self.attempts if a.success)


class SwapResult(BaseModel):
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    nonce: Optional[int] = None
    gas_price: Optional[int] = None
    elapsed_ms: float = 0.0
