"""
Small helpers around addresses, deadlines and units shared by the services.
"""

from __future__ import annotations

import time
from decimal import Decimal

from web3 import Web3


def same_address(a: str | None, b: str | None) -> bool:
    """Case-insensitive address comparison (no checksum needed)."""
    if not a or not b:
        return False
    return a.lower() == b.lower()


def deadline_from_now(seconds: int, now: float | None = None) -> int:
    """Absolute unix timestamp ``seconds`` in the future.

    The router expects an absolute deadline, never a relative offset.
    """
    base = int(now if now is not None else time.time())
    return base + int(seconds)


def clamp_gas_price(price_wei: int, max_wei: int) -> int:
    return min(int(price_wei), int(max_wei))


def format_wei(value: int, unit: str = "ether") -> str:
    return f"{Web3.from_wei(int(value), unit):.6f}"


def format_scaled(value: int, scale: int) -> str:
    """Render a fixed-point integer without going through float."""
    return f"{Decimal(int(value)) / Decimal(scale):.12f}"


def to_0x(raw: bytes | str) -> str:
    if isinstance(raw, (bytes, bytearray)):
        return Web3.to_hex(raw)
    return raw if raw.startswith("0x") else "0x" + raw
