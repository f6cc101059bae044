# services/nonce_service.py
from __future__ import annotations
from typing import Awaitable, Callable, Optional

from utils.logger import logger_manager

logger = logger_manager.setup_logger(__name__)


class NonceManager:
    """
    Contador de nonce local (gestión manual por velocidad).

    Reglas:
      - se lee UNA vez por tx (``current``) y sólo se incrementa tras un
        broadcast aceptado (``commit``), así un fallo no deja huecos.
      - ``resync`` fija el contador al nonce 'pending' de la cadena.
      - ``reconcile`` (bucle periódico) sólo lo mueve hacia delante.
    """

    def __init__(self, fetch_pending: Callable[[], Awaitable[int]]) -> None:
        self._fetch_pending = fetch_pending
        self._current: Optional[int] = None

    @property
    def current(self) -> int:
        if self._current is None:
            raise RuntimeError("NonceManager sin sincronizar; llama a resync() primero.")
        return self._current

    async def resync(self) -> int:
        pending = int(await self._fetch_pending())
        if self._current is not None and pending != self._current:
            logger.info(f"Nonce resync: {self._current} → {pending}")
        self._current = pending
        return pending

    def commit(self, used_nonce: int) -> int:
        """Marca ``used_nonce`` como consumido (tras broadcast OK)."""
        self._current = max(self.current, int(used_nonce) + 1)
        return self._current

    async def reconcile(self) -> bool:
        """Corrige deriva si la cadena va por delante. Devuelve True si cambió."""
        pending = int(await self._fetch_pending())
        if self._current is None or pending > self._current:
            logger.info(f"Nonce drift → {self._current} → {pending}")
            self._current = pending
            return True
        return False
