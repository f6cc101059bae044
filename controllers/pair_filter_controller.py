# controllers/pair_filter_controller.py
from __future__ import annotations
import asyncio
import time
from typing import Iterable, List, Optional

from models.pair_event import PairCreatedEvent, SnipeTarget
from repositories.state_repository import TradeGate
from services.honeypot_service import HoneypotService
from services.market_service import ReserveOracle, total_liquidity_wei
from utils.errors import TransientReadError
from utils.logger import logger_manager
from utils.web3_utils import format_wei, same_address

logger = logger_manager.setup_logger(__name__)


def should_buy_name(name: str, keywords: Iterable[str]) -> bool:
    """False si el nombre contiene alguna palabra de la lista (sin mayúsculas)."""
    lowered = (name or "").lower()
    for kw in keywords:
        kw = (kw or "").strip().lower()
        if kw and kw in lowered:
            return False
    return True


class PairEventFilter:
    """
    Decide si un PairCreated merece compra. Pasos en orden barato → caro:
    lado base, reservas, liquidez, gate, metadata, lista negra de nombres,
    honeypot (opcional) y, por último, adquirir el gate.
    Nunca lanza: cualquier rechazo se loguea y devuelve None.
    """

    def __init__(
        self,
        base_token: str,
        gateway,
        oracle: ReserveOracle,
        gate: TradeGate,
        min_liquidity_wei: int = 0,
        name_keywords: Optional[List[str]] = None,
        metadata_timeout: float = 3.0,
        honeypot: Optional[HoneypotService] = None,
    ) -> None:
        self.base_token = base_token
        self.gateway = gateway
        self.oracle = oracle
        self.gate = gate
        self.min_liquidity_wei = int(min_liquidity_wei)
        self.name_keywords = list(name_keywords or [])
        self.metadata_timeout = float(metadata_timeout)
        self.honeypot = honeypot

    async def evaluate(self, event: PairCreatedEvent) -> Optional[SnipeTarget]:
        try:
            return await self._evaluate(event)
        except Exception as e:
            logger.exception(f"[{event.pair_address}] error evaluando par: {e}")
            return None

    async def _evaluate(self, event: PairCreatedEvent) -> Optional[SnipeTarget]:
        pair = event.pair_address

        # 1) el par debe incluir el activo base
        if same_address(event.token0, self.base_token):
            token, token_is_second_leg = event.token1, True
        elif same_address(event.token1, self.base_token):
            token, token_is_second_leg = event.token0, False
        else:
            logger.debug(f"[{pair}] par sin WBNB, ignorado")
            return None
        logger.info(f"🆕 Nuevo par: {pair} token={token}")

        # 2-3) reservas
        try:
            r0, r1 = await self.oracle.read_pair_reserves(pair)
        except TransientReadError as e:
            logger.warning(f"[{pair}] ❌ no se pudieron leer reservas: {e}")
            return None
        base_reserve = r0 if token_is_second_leg else r1
        token_reserve = r1 if token_is_second_leg else r0
        if base_reserve == 0 or token_reserve == 0:
            logger.info(f"[{pair}] ❌ sin liquidez todavía (reservas a cero)")
            return None

        # 4) liquidez mínima
        liquidity = total_liquidity_wei(base_reserve)
        if self.min_liquidity_wei > 0 and liquidity < self.min_liquidity_wei:
            logger.info(
                f"[{pair}] ❌ liquidez {format_wei(liquidity)} BNB < mínimo {format_wei(self.min_liquidity_wei)} BNB"
            )
            return None

        # 5) salida rápida si ya hay una operación en curso
        if self.gate.active:
            logger.info(f"[{pair}] ⏭️ sniping ocupado con {self.gate.target_token}, se ignora {token}")
            return None

        # 6) metadata
        try:
            info = await asyncio.wait_for(self.gateway.get_token_info(token), timeout=self.metadata_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{pair}] ❌ timeout leyendo name/symbol de {token}")
            return None
        except Exception as e:
            logger.warning(f"[{pair}] ❌ no se pudo leer name/symbol de {token}: {e}")
            return None

        # 7) lista negra de nombres
        if not should_buy_name(info.name, self.name_keywords):
            logger.info(f"[{pair}] ❌ nombre '{info.name}' ({info.symbol}) en lista negra")
            return None

        # 7b) honeypot
        if self.honeypot is not None:
            reasons = await self.honeypot.check_token(token)
            if reasons:
                logger.info(f"[{pair}] ❌ {info.symbol} descartado por honeypot: {', '.join(reasons)}")
                return None

        # 8) otro handler pudo ganar mientras esperábamos
        if self.gate.active:
            logger.info(f"[{pair}] ⏭️ sniping ocupado con {self.gate.target_token}, se ignora {token}")
            return None

        # 9)
        if not self.gate.try_acquire(token):
            logger.info(f"[{pair}] ⏭️ gate perdido para {token}")
            return None

        logger.info(
            f"[{pair}] 🎯 Objetivo: {info.name} ({info.symbol}) liquidez={format_wei(liquidity)} BNB"
        )
        return SnipeTarget(
            token=token,
            pair_address=pair,
            token_is_second_leg=token_is_second_leg,
            name=info.name,
            symbol=info.symbol,
            liquidity_wei=liquidity,
            detected_at=time.time(),
        )
