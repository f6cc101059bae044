"""
Enumerations for the position lifecycle.

A position handled by the sell monitor moves strictly forward through
``MonitorState``; ``SellReason`` says which exit condition fired and
``MonitorOutcome`` records how the lifecycle ended (and therefore why the
trade gate was released).
"""

from __future__ import annotations

from enum import Enum


class MonitorState(str, Enum):
    """States of the per-position sell monitor."""

    AWAITING_BUY_CONFIRMATION = "awaiting_buy_confirmation"
    MONITORING = "monitoring"
    SELLING = "selling"
    DONE = "done"


class SellReason(str, Enum):
    """Exit condition that triggered the sell."""

    LIQUIDITY_DROP = "liquidity_drop"
    TAKE_PROFIT = "take_profit"
    TRAILING_STOP = "trailing_stop"
    TIME_LIMIT = "time_limit"


class MonitorOutcome(str, Enum):
    """Terminal result of a position lifecycle."""

    BUY_FAILED = "buy_failed"
    BUY_REVERTED = "buy_reverted"
    NO_TOKENS = "no_tokens"
    NO_PRICE = "no_price"
    SOLD = "sold"
    SELL_FAILED = "sell_failed"
    DRY_RUN = "dry_run"
    CRASHED = "crashed"
    CANCELLED = "cancelled"
