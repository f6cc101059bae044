# services/market_service.py
from __future__ import annotations
import asyncio
from typing import Optional, Protocol, Tuple

from models.pair_event import Reserves
from utils.errors import TransientReadError
from utils.logger import logger_manager
from utils.web3_utils import format_scaled

logger = logger_manager.setup_logger(__name__)

# precio = reserva_base * PRICE_SCALE // reserva_token  (10^24 de precisión)
PRICE_SCALE = 10 ** 24

DEFAULT_ROUNDS = 5
DEFAULT_ROUND_DELAY_SECS = 0.8
DEFAULT_CALL_TIMEOUT_SECS = 3.0


class ReserveReader(Protocol):
    endpoint_count: int

    async def get_reserves(self, pair_address: str, endpoint: int = 0) -> Tuple[int, int]: ...


def orient(reserve0: int, reserve1: int, token_is_second_leg: bool) -> Reserves:
    """Ordena (r0, r1) como (lado base, lado token)."""
    if token_is_second_leg:
        return Reserves(base=int(reserve0), token=int(reserve1))
    return Reserves(base=int(reserve1), token=int(reserve0))


def scaled_price(base_reserve: int, token_reserve: int) -> int:
    if token_reserve <= 0:
        return 0
    return int(base_reserve) * PRICE_SCALE // int(token_reserve)


def total_liquidity_wei(base_reserve: int) -> int:
    # pool constant-product: ambos lados valen lo mismo → total = 2 × lado base
    return 2 * int(base_reserve)


class ReserveOracle:
    """
    Precio spot a partir de las reservas del par, con reintentos:
    hasta ``rounds`` rondas, cada ronda prueba todos los endpoints (WS primero,
    luego HTTP) y espera ``round_delay`` entre rondas. Reservas a cero = transitorio.
    """

    def __init__(
        self,
        reader: ReserveReader,
        rounds: int = DEFAULT_ROUNDS,
        round_delay: float = DEFAULT_ROUND_DELAY_SECS,
        call_timeout: float = DEFAULT_CALL_TIMEOUT_SECS,
    ) -> None:
        self.reader = reader
        self.rounds = max(1, int(rounds))
        self.round_delay = float(round_delay)
        self.call_timeout = float(call_timeout)

    async def read_pair_reserves(self, pair_address: str) -> Tuple[int, int]:
        """Una sola lectura (endpoint principal). Lanza TransientReadError."""
        try:
            return await asyncio.wait_for(self.reader.get_reserves(pair_address, 0), timeout=self.call_timeout)
        except asyncio.TimeoutError:
            raise TransientReadError(f"getReserves timeout para {pair_address}") from None
        except Exception as e:
            raise TransientReadError(f"getReserves falló para {pair_address}: {e}") from e

    async def get_reserves(self, pair_address: str, token_is_second_leg: bool) -> Optional[Reserves]:
        endpoints = max(1, int(self.reader.endpoint_count))
        for round_no in range(self.rounds):
            for idx in range(endpoints):
                try:
                    r0, r1 = await asyncio.wait_for(
                        self.reader.get_reserves(pair_address, idx), timeout=self.call_timeout
                    )
                except asyncio.TimeoutError:
                    logger.debug(f"[{pair_address}] getReserves timeout (endpoint {idx})")
                    continue
                except Exception as e:
                    logger.debug(f"[{pair_address}] getReserves error (endpoint {idx}): {e}")
                    continue
                if r0 > 0 and r1 > 0:
                    return orient(r0, r1, token_is_second_leg)
            if round_no < self.rounds - 1:
                await asyncio.sleep(self.round_delay)
        logger.warning(f"[{pair_address}] sin reservas válidas tras {self.rounds} rondas")
        return None

    async def get_price(self, pair_address: str, token_is_second_leg: bool) -> int:
        """Precio escalado (base por token × PRICE_SCALE) o 0 si no hay forma de leerlo."""
        reserves = await self.get_reserves(pair_address, token_is_second_leg)
        if reserves is None:
            return 0
        price = scaled_price(reserves.base, reserves.token)
        logger.debug(f"[{pair_address}] precio token ==>> {format_scaled(price, PRICE_SCALE)} BNB/token")
        return price
