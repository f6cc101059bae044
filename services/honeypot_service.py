"""
Service for detecting honeypot tokens.

Basic, cheap heuristics only: the token must have contract code, expose
name/symbol/decimals and a non-zero total supply. Optionally the GoPlus
token-security API is asked as well; an unreachable GoPlus counts as
"unknown", not as honeypot.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional

import requests

from utils.logger import logger_manager

logger = logger_manager.setup_logger(__name__)


class HoneypotService:
    GOPLUS_URL = "https://api.gopluslabs.io/api/v1/token_security/{chain_id}"

    def __init__(self, gateway, chain_id: int = 56, use_goplus: bool = False, timeout: float = 10.0) -> None:
        self.gateway = gateway
        self.chain_id = chain_id
        self.use_goplus = use_goplus
        self.timeout = timeout

    async def check_token(self, token_address: str) -> List[str]:
        """Devuelve los motivos de sospecha; lista vacía = pasa el filtro."""
        reasons: List[str] = []
        info, decimals, supply, code = await asyncio.gather(
            self.gateway.get_token_info(token_address),
            self.gateway.decimals(token_address),
            self.gateway.total_supply(token_address),
            self.gateway.get_code(token_address),
            return_exceptions=True,
        )
        if isinstance(info, Exception) or isinstance(decimals, Exception):
            reasons.append("Cannot read token information")
        if isinstance(supply, Exception):
            reasons.append("Cannot read total supply")
        elif int(supply) == 0:
            reasons.append("Total supply is zero")
        if isinstance(code, Exception) or not code or bytes(code) in (b"", b"\x00"):
            reasons.append("No contract code at address")

        if self.use_goplus and not reasons:
            flagged = await asyncio.to_thread(self._goplus_is_honeypot, token_address)
            if flagged:
                reasons.append("GoPlus: is_honeypot=1")

        if reasons:
            logger.warning(f"⚠️  Posible honeypot: {token_address}")
            for r in reasons:
                logger.warning(f"   - {r}")
        return reasons

    def _goplus_is_honeypot(self, token_address: str) -> Optional[bool]:
        try:
            url = self.GOPLUS_URL.format(chain_id=self.chain_id)
            response = requests.get(url, params={"contract_addresses": token_address}, timeout=self.timeout)
            if response.status_code != 200:
                logger.warning(f"GoPlus API error: {response.status_code}")
                return None

            data = (response.json().get("result") or {}).get(token_address.lower(), {})
            return data.get("is_honeypot", "0") == "1"  # 1 = honeypot

        except (requests.RequestException, ValueError) as e:
            logger.error(f"Error al consultar GoPlus: {e}")
            return None
