# services/broadcast_service.py
from __future__ import annotations
import asyncio
import time
from typing import List, Optional, Protocol, Sequence, Set

from web3 import AsyncWeb3, Web3

from models.trade_result import BroadcastAttempt, PendingBroadcast
from utils.errors import AllEndpointsFailed
from utils.logger import logger_manager, log_function
from utils.web3_utils import to_0x

logger = logger_manager.setup_logger(__name__)

DEFAULT_TIMEOUT_MS = 5000


class RpcEndpoint(Protocol):
    name: str

    async def send_raw_transaction(self, raw_tx: str) -> str: ...


class Web3Endpoint:
    """Endpoint de broadcast respaldado por un AsyncWeb3 (HTTP o WS)."""

    def __init__(self, name: str, w3: AsyncWeb3) -> None:
        self.name = name
        self._w3 = w3

    async def send_raw_transaction(self, raw_tx: str) -> str:
        tx_hash = await self._w3.eth.send_raw_transaction(raw_tx)
        if not tx_hash:
            raise RuntimeError("No transaction hash returned")
        return Web3.to_hex(tx_hash)

    async def block_number(self) -> int:
        return int(await self._w3.eth.block_number)


class MultiEndpointBroadcaster:
    """
    Envía la misma tx firmada a todos los endpoints a la vez y devuelve el
    primer hash aceptado. Los perdedores NO se cancelan: terminan en segundo
    plano y sólo se registran (un 'already known' es lo esperado).
    """

    def __init__(self, endpoints: Sequence[RpcEndpoint]) -> None:
        self.endpoints: List[RpcEndpoint] = list(endpoints)
        self.last_broadcast: Optional[PendingBroadcast] = None
        self._background: Set[asyncio.Task] = set()

    async def _submit(
        self,
        index: int,
        endpoint: RpcEndpoint,
        raw_tx: str,
        timeout_s: float,
        started: float,
        pending: PendingBroadcast,
    ) -> BroadcastAttempt:
        attempt = BroadcastAttempt(endpoint_index=index, endpoint=getattr(endpoint, "name", str(index)))
        try:
            attempt.tx_hash = await asyncio.wait_for(endpoint.send_raw_transaction(raw_tx), timeout=timeout_s)
            attempt.success = True
            attempt.elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(f"  ✅ RPC {index + 1} aceptó ({attempt.elapsed_ms:.0f}ms)")
        except asyncio.TimeoutError:
            attempt.error = "Timeout"
            attempt.elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(f"  ⚠️  RPC {index + 1} falló: Timeout")
        except Exception as e:
            attempt.error = str(e) or e.__class__.__name__
            attempt.elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(f"  ⚠️  RPC {index + 1} falló: {attempt.error[:50]}")
        pending.attempts.append(attempt)
        return attempt

    async def _settle(self, tasks: Set[asyncio.Task], pending: PendingBroadcast) -> None:
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"📊 Final: {pending.accepted}/{len(self.endpoints)} RPCs aceptaron la tx")

    @log_function
    async def broadcast(self, raw_tx: bytes | str, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> str:
        """Race ``raw_tx`` across every endpoint. Raises :class:`AllEndpointsFailed`."""
        raw_hex = to_0x(raw_tx)
        pending = PendingBroadcast(raw_tx=raw_hex)
        self.last_broadcast = pending
        if not self.endpoints:
            raise AllEndpointsFailed([])

        started = time.perf_counter()
        timeout_s = max(timeout_ms, 1) / 1000.0
        logger.info(f"Broadcasting a {len(self.endpoints)} endpoints RPC...")

        remaining: Set[asyncio.Task] = {
            asyncio.create_task(self._submit(i, ep, raw_hex, timeout_s, started, pending))
            for i, ep in enumerate(self.endpoints)
        }
        winner: Optional[BroadcastAttempt] = None
        while remaining and winner is None:
            done, remaining = await asyncio.wait(remaining, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                attempt = task.result()
                if attempt.success and winner is None:
                    winner = attempt

        if winner is None:
            raise AllEndpointsFailed(pending.attempts)

        logger.info(f"✅ Broadcast OK: {winner.tx_hash} (RPC {winner.endpoint_index + 1})")
        if remaining:
            bg = asyncio.create_task(self._settle(remaining, pending))
            self._background.add(bg)
            bg.add_done_callback(self._background.discard)
        else:
            logger.info(f"📊 Final: {pending.accepted}/{len(self.endpoints)} RPCs aceptaron la tx")
        return winner.tx_hash
