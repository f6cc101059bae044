"""
Error taxonomy for the sniper.

Only ``ConfigError`` is fatal. Everything else ends, at most, the current
buy/sell attempt or the current position; handlers catch and log them so the
event subscription never dies.
"""

from __future__ import annotations


class SniperError(Exception):
    """Base class for every error raised by the bot."""


class ConfigError(SniperError):
    """Missing or invalid configuration detected at startup."""


class TransientReadError(SniperError):
    """A reserve or metadata read failed; worth retrying, eventually skipped."""


class NonceConflictError(SniperError):
    """The node rejected the tx because of the nonce (too low, already known...)."""


class BroadcastFailure(SniperError):
    """A signed transaction could not be broadcast."""


class AllEndpointsFailed(BroadcastFailure):
    """Every configured endpoint rejected the tx or timed out."""

    def __init__(self, attempts: list | None = None) -> None:
        self.attempts = list(attempts or [])
        detail = "; ".join(
            f"#{a.endpoint_index + 1} {a.error}" for a in self.attempts if not a.success
        )
        msg = "All RPC endpoints failed to broadcast transaction"
        super().__init__(f"{msg}: {detail}" if detail else msg)


class OnChainRevert(SniperError):
    """Receipt came back with status 0 (or never came back)."""


class MonitorCrash(SniperError):
    """Unexpected failure inside a position lifecycle."""


_NONCE_HINTS = (
    "nonce",
    "already known",
    "replacement transaction underpriced",
)


def is_nonce_conflict(message: str) -> bool:
    """True si el texto del error del nodo apunta a un conflicto de nonce."""
    text = (message or "").lower()
    return any(h in text for h in _NONCE_HINTS)
