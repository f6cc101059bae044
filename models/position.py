"""
Open position owned by a single sell monitor.

Prices are fixed-point integers scaled by ``services.market_service.PRICE_SCALE``
(base-asset wei per token wei), so no float ever enters the exit decisions.
"""

from __future__ import annotations

import time

from pydantic import BaseModel, Field


class Position(BaseModel):
    token: str
    pair_address: str
    token_is_second_leg: bool
    entry_price_scaled: int
    peak_price_scaled: int
    token_balance: int
    sold: bool = False

    symbol: str = ""
    name: str = ""
    buy_tx_hash: str = ""
    initial_liquidity_wei: int = 0
    opened_at: float = Field(default_factory=time.time)

    def gain_pct(self, price_scaled: int) -> float:
        if self.entry_price_scaled <= 0:
            return 0.0
        return (price_scaled - self.entry_price_scaled) * 100.0 / self.entry_price_scaled
