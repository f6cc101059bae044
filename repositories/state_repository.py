"""
Process-wide trading state: the single-flight trade gate.

The gate admits one position lifecycle at a time and rejects (never queues)
contenders. It is kept in memory only; nothing here survives a restart.
"""

from __future__ import annotations

import threading
from typing import Dict, Optional

from utils.logger import logger_manager

logger = logger_manager.setup_logger(__name__)


class TradeGate:
    """Single-flight lock over the current snipe target.

    ``active is False`` implies ``target_token is None``. Both fields are only
    changed through :meth:`try_acquire` and :meth:`release`, which are atomic.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active = False
        self._target_token: Optional[str] = None
        self.listening = False     # sólo informativo (status)

    @property
    def active(self) -> bool:
        return self._active

    @property
    def target_token(self) -> Optional[str]:
        return self._target_token

    def try_acquire(self, token: str) -> bool:
        """Lock the gate for ``token`` if it is free. Never blocks."""
        with self._lock:
            if self._active:
                return False
            self._active = True
            self._target_token = token
        logger.info(f"🔒 Sniping bloqueado para token: {token}")
        self.log_status()
        return True

    def release(self, reason: str = "") -> bool:
        """Unlock unconditionally. Idempotent; returns True if it was locked."""
        with self._lock:
            was_active = self._active
            previous = self._target_token
            self._active = False
            self._target_token = None
        if was_active:
            suffix = f" ({reason})" if reason else ""
            logger.info(f"🔓 Sniping desbloqueado{suffix} – token anterior: {previous}")
            self.log_status()
        return was_active

    def snapshot(self) -> Dict[str, str]:
        return {
            "Sniping Active": "✅ YES" if self._active else "❌ NO",
            "Current Target": self._target_token or "None",
            "Event Listener": "✅ ACTIVE" if self.listening else "❌ INACTIVE",
        }

    def log_status(self) -> None:
        lines = " | ".join(f"{k}: {v}" for k, v in self.snapshot().items())
        logger.info(f"📊 Bot Status: {lines}")
