# services/gas_service.py
from __future__ import annotations
from decimal import Decimal
from typing import Awaitable, Callable

from utils.logger import logger_manager
from utils.web3_utils import clamp_gas_price, format_wei

logger = logger_manager.setup_logger(__name__)


class GasPolicy:
    """
    Precio de gas legacy (BSC):
      - por defecto: precio fijo bajo (DEFAULT_GAS_PRICE_GWEI)
      - competitivo: gasPrice de red × GAS_PRICE_MULTIPLIER
    Ambos acotados por MAX_GAS_PRICE_GWEI.
    """

    def __init__(
        self,
        network_gas_price: Callable[[], Awaitable[int]],
        default_wei: int,
        multiplier: Decimal,
        max_wei: int,
        fallback_network_wei: int = 3_000_000_000,   # 3 gwei si el nodo no responde
    ) -> None:
        self._network_gas_price = network_gas_price
        self.default_wei = int(default_wei)
        self.multiplier = Decimal(multiplier)
        self.max_wei = int(max_wei)
        self.fallback_network_wei = int(fallback_network_wei)

    def competitive_from(self, network_wei: int) -> int:
        boosted = int(Decimal(int(network_wei)) * self.multiplier)
        return clamp_gas_price(boosted, self.max_wei)

    async def price(self, competitive: bool = False) -> int:
        if not competitive:
            return clamp_gas_price(self.default_wei, self.max_wei)
        try:
            network = int(await self._network_gas_price())
        except Exception as e:
            logger.warning(f"gasPrice de red no disponible ({e}); uso {format_wei(self.fallback_network_wei, 'gwei')} gwei")
            network = self.fallback_network_wei
        gas = self.competitive_from(network or self.fallback_network_wei)
        logger.info(f"  Gas COMPETITIVO: {format_wei(gas, 'gwei')} gwei (red {format_wei(network, 'gwei')})")
        return gas
