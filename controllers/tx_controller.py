# controllers/tx_controller.py
from __future__ import annotations
from typing import Any, Tuple

from services.broadcast_service import MultiEndpointBroadcaster
from services.gas_service import GasPolicy
from services.nonce_service import NonceManager
from utils.errors import BroadcastFailure, NonceConflictError, is_nonce_conflict
from utils.logger import logger_manager

logger = logger_manager.setup_logger(__name__)

DRY_RUN_TX_HASH = "0x" + "0" * 64


class TxController:
    """
    Base común compra/venta: firma, broadcast multi-RPC y contabilidad del nonce.
    """

    def __init__(
        self,
        gateway,
        broadcaster: MultiEndpointBroadcaster,
        nonces: NonceManager,
        gas: GasPolicy,
        broadcast_timeout_ms: int = 5000,
        dry_run: bool = False,
    ) -> None:
        self.gateway = gateway
        self.broadcaster = broadcaster
        self.nonces = nonces
        self.gas = gas
        self.broadcast_timeout_ms = broadcast_timeout_ms
        self.dry_run = dry_run

    async def _send(self, tx: dict[str, Any]) -> str:
        """Firma + broadcast. El nonce sólo avanza si algún endpoint acepta."""
        raw = self.gateway.sign(tx)
        if self.dry_run:
            logger.info(f"[DRY_RUN] No se envía tx (nonce={tx.get('nonce')}, to={tx.get('to')})")
            return DRY_RUN_TX_HASH
        try:
            tx_hash = await self.broadcaster.broadcast(raw, self.broadcast_timeout_ms)
        except BroadcastFailure as e:
            if is_nonce_conflict(str(e)):
                raise NonceConflictError(str(e)) from e
            raise
        self.nonces.commit(int(tx["nonce"]))
        return tx_hash

    async def _gas_and_nonce(self, competitive: bool = False) -> Tuple[int, int]:
        gas_price = await self.gas.price(competitive)
        return gas_price, self.nonces.current  # leer UNA vez

    async def _resync_after_conflict(self) -> None:
        logger.info("Resync de nonce...")
        try:
            await self.nonces.resync()
        except Exception as e:
            logger.warning(f"No se pudo resincronizar el nonce: {e}")
