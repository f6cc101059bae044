# controllers/sell_controller.py
from __future__ import annotations
import time

from controllers.tx_controller import TxController
from models.position import Position
from models.trade_result import SwapResult
from utils.errors import NonceConflictError, OnChainRevert
from utils.logger import logger_manager, log_function
from utils.web3_utils import deadline_from_now

logger = logger_manager.setup_logger(__name__)


class SellExecutor(TxController):
    """
    Venta token → BNB de una posición completa:
      - approve del router por el saldo exacto si el allowance no llega
        (y espera a que se confirme)
      - resync del nonce contra la cadena (ha pasado tiempo desde la compra)
      - swapExactTokensForETH con amountOutMin = 0 y deadline absoluto
      - broadcast multi-RPC
    No reintenta: si falla, la posición se abandona.
    """

    def __init__(self, *args, router_address: str, deadline_seconds: int = 300,
                 approve_timeout: float = 60, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.router_address = router_address
        self.deadline_seconds = deadline_seconds
        self.approve_timeout = approve_timeout

    @log_function
    async def ensure_allowance(self, token_address: str, amount_raw: int) -> None:
        allowance = await self.gateway.allowance(token_address, self.router_address)
        if allowance >= amount_raw:
            logger.info(f"Ya aprobado: {token_address}")
            return

        logger.info(f"Aprobando {token_address} ({amount_raw} raw)...")
        await self.nonces.resync()
        gas_price, nonce = await self._gas_and_nonce()
        tx = self.gateway.build_approve_tx(token_address, self.router_address, amount_raw, gas_price, nonce)
        tx_hash = await self._send(tx)
        if self.dry_run:
            return
        receipt = await self.gateway.wait_for_receipt(tx_hash, timeout=self.approve_timeout)
        if not receipt or int(receipt["status"]) != 1:
            raise OnChainRevert(f"approve no confirmado: {tx_hash}")
        logger.info(f"Aprobado: {tx_hash}")

    @log_function
    async def sell(self, position: Position) -> SwapResult:
        start = time.perf_counter()
        nonce = None
        try:
            await self.ensure_allowance(position.token, position.token_balance)

            await self.nonces.resync()
            gas_price, nonce = await self._gas_and_nonce()
            deadline = deadline_from_now(self.deadline_seconds)
            tx = self.gateway.build_sell_tx(position.token, position.token_balance, deadline, gas_price, nonce)
            tx_hash = await self._send(tx)

            elapsed = (time.perf_counter() - start) * 1000
            logger.info(f"VENTA EJECUTADA: {tx_hash} ({elapsed:.0f}ms)")
            logger.info(f"Sell tx: https://bscscan.com/tx/{tx_hash}")
            return SwapResult(success=True, tx_hash=tx_hash, nonce=nonce, gas_price=gas_price, elapsed_ms=elapsed)

        except NonceConflictError as e:
            logger.error(f"VENTA FALLIDA por nonce: {e}")
            await self._resync_after_conflict()
            return SwapResult(success=False, error=str(e), nonce=nonce,
                              elapsed_ms=(time.perf_counter() - start) * 1000)
        except Exception as e:
            logger.error(f"VENTA FALLIDA: {e}")
            return SwapResult(success=False, error=str(e) or e.__class__.__name__, nonce=nonce,
                              elapsed_ms=(time.perf_counter() - start) * 1000)
