"""
Models for what the factory subscription delivers and what the pair filter
hands over to the buy flow.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class PairCreatedEvent(BaseModel):
    """Decoded ``PairCreated(token0, token1, pair, index)`` log."""

    token0: str
    token1: str
    pair_address: str
    block_number: Optional[int] = None
    tx_hash: Optional[str] = None


class TokenInfo(BaseModel):
    name: str = ""
    symbol: str = ""


class SnipeTarget(BaseModel):
    """A pair that passed every filter and for which the gate is now held."""

    token: str
    pair_address: str
    token_is_second_leg: bool      # True si token0 es el activo base
    name: str = ""
    symbol: str = ""
    liquidity_wei: int = 0
    detected_at: float = 0.0


class Reserves(BaseModel):
    """Pool reserves already oriented as base-asset side / token side."""

    base: int
    token: int
