"""
Buy leg of a snipe: base asset → new token through the router.

The swap is sent with ``amountOutMin = 0``: a snipe accepts any fill rather
than miss the block. The deadline is always an absolute unix timestamp.
"""

from __future__ import annotations

import time

from controllers.tx_controller import TxController
from models.trade_result import SwapResult
from utils.errors import NonceConflictError
from utils.logger import logger_manager, log_function
from utils.web3_utils import deadline_from_now, format_wei

logger = logger_manager.setup_logger(__name__)


class BuyExecutor(TxController):
    """Build, sign and race a ``swapExactETHForTokens``."""

    @log_function
    async def execute_swap(
        self,
        token_out: str,
        base_amount_in: int,
        deadline_minutes: int = 3,
        use_competitive_gas: bool = False,
    ) -> SwapResult:
        start = time.perf_counter()
        nonce = None
        gas_price = None
        try:
            logger.info(f"SWAP: {format_wei(base_amount_in)} BNB → {token_out} (vía PancakeSwap Router)")
            logger.info(f"Token objetivo: https://bscscan.com/address/{token_out}")

            deadline = deadline_from_now(int(deadline_minutes) * 60)
            gas_price, nonce = await self._gas_and_nonce(use_competitive_gas)

            tx = self.gateway.build_buy_tx(token_out, int(base_amount_in), deadline, gas_price, nonce)
            sign_ms = (time.perf_counter() - start) * 1000
            tx_hash = await self._send(tx)

            submit_ms = (time.perf_counter() - start) * 1000
            logger.info(f"Compra enviada (firma: {sign_ms:.0f}ms, envío: {submit_ms:.0f}ms): {tx_hash}")
            logger.info(f"Buy tx: https://bscscan.com/tx/{tx_hash}")
            return SwapResult(success=True, tx_hash=tx_hash, nonce=nonce, gas_price=gas_price, elapsed_ms=submit_ms)

        except NonceConflictError as e:
            logger.error(f"Compra fallida por nonce ({(time.perf_counter() - start) * 1000:.0f}ms): {e}")
            await self._resync_after_conflict()
            return SwapResult(success=False, error=str(e), nonce=nonce, gas_price=gas_price,
                              elapsed_ms=(time.perf_counter() - start) * 1000)
        except Exception as e:
            logger.error(f"Compra fallida ({(time.perf_counter() - start) * 1000:.0f}ms): {e}")
            return SwapResult(success=False, error=str(e) or e.__class__.__name__, nonce=nonce,
                              gas_price=gas_price, elapsed_ms=(time.perf_counter() - start) * 1000)
