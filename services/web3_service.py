from __future__ import annotations
import asyncio
import os
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Tuple, TypeVar

import aiohttp
from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import TimeExhausted
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider, WebSocketProvider

from models.pair_event import PairCreatedEvent, TokenInfo
from services.broadcast_service import Web3Endpoint
from utils.abis import ERC20_ABI, FACTORY_ABI, PAIR_ABI, ROUTER_ABI
from utils.config import BotConfig
from utils.logger import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

T = TypeVar("T")

# ---------- ENV ----------
REQUEST_TIMEOUT_SECS   = float(os.getenv("RPC_TIMEOUT_SECS", "10"))
RETRY_RPC_TIMES        = int(os.getenv("RPC_RETRIES", "3"))
RETRY_BACKOFF_SECS     = float(os.getenv("RPC_RETRY_BACKOFF_SECS", "0.4"))

PAIR_CREATED_TOPIC = Web3.to_hex(Web3.keccak(text="PairCreated(address,address,address,uint256)"))


class Web3Service:
    """
    Pasarela a la cadena (todo asíncrono):
      - WS principal: suscripción a PairCreated + lecturas rápidas.
      - HTTP (RPC_URLS): fallback de lecturas y endpoints de broadcast.
      - Firma local con eth_account; las tx se codifican sin llamar al nodo.
    """

    def __init__(self, config: BotConfig) -> None:
        self.config = config
        self._account = Account.from_key(config.private_key)
        self.wallet_address: str = self._account.address

        self._ws: Optional[AsyncWeb3] = None
        self._http: List[AsyncWeb3] = [self._http_client(u) for u in config.rpc_urls]

        # Contratos sólo para codificar calldata (sin proveedor)
        codec = Web3()
        self._router_addr = Web3.to_checksum_address(config.router_address)
        self._wbnb_addr = Web3.to_checksum_address(config.wbnb_address)
        self._router = codec.eth.contract(address=self._router_addr, abi=ROUTER_ABI)
        self._erc20_codec = codec.eth.contract(abi=ERC20_ABI)

    # ---------- conexión ----------
    @staticmethod
    def _http_client(url: str) -> AsyncWeb3:
        w3 = AsyncWeb3(AsyncHTTPProvider(
            url, request_kwargs={"timeout": aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECS)}
        ))
        # BSC estilo PoA (aunque no lo necesite en mainnet, no molesta)
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return w3

    async def _open_ws(self) -> AsyncWeb3:
        w3 = await AsyncWeb3(WebSocketProvider(self.config.ws_provider_url))
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return w3

    async def _drop_ws(self) -> None:
        old, self._ws = self._ws, None
        if old is None:
            return
        try:
            await old.provider.disconnect()
        except Exception as e:
            logger.debug(f"Error cerrando WebSocket anterior: {e}")

    @log_function
    async def connect(self) -> None:
        # reconexión: el socket anterior se cierra antes de abrir otro
        await self._drop_ws()
        self._ws = await self._open_ws()
        chain = await self._ws.eth.chain_id
        if int(chain) != int(self.config.chain_id):
            logger.warning(f"chain_id del nodo ({chain}) distinto del configurado ({self.config.chain_id})")
        logger.info(f"Conectado a BSC WebSocket (chain_id={chain}); {len(self._http)} endpoints HTTP")

    async def close(self) -> None:
        clients: List[AsyncWeb3] = ([self._ws] if self._ws else []) + self._http
        for w3 in clients:
            try:
                await w3.provider.disconnect()
            except Exception as e:
                logger.debug(f"Error cerrando proveedor: {e}")
        self._ws = None

    @property
    def readers(self) -> List[AsyncWeb3]:
        """WS primero, luego los fallbacks HTTP."""
        return ([self._ws] if self._ws else []) + self._http

    @property
    def endpoint_count(self) -> int:
        return len(self.readers)

    def _reader(self, endpoint: int = 0) -> AsyncWeb3:
        readers = self.readers
        if not readers:
            raise ConnectionError("Sin proveedores configurados.")
        return readers[endpoint % len(readers)]

    async def _rpc_call(self, label: str, fn: Callable[[AsyncWeb3], Awaitable[T]], retries: int = RETRY_RPC_TIMES) -> T:
        """
        Ejecuta una llamada RPC con reintentos, rotando de proveedor en cada intento.
        """
        last_exc: Optional[Exception] = None
        for attempt in range(1, retries + 1):
            try:
                return await fn(self._reader(attempt - 1))
            except Exception as e:
                last_exc = e
                logger.warning(f"[RPC:{label}] intento {attempt}/{retries} falló: {e}")
                await asyncio.sleep(RETRY_BACKOFF_SECS * attempt)
        # tras agotar intentos, propaga
        raise last_exc if last_exc else RuntimeError(f"RPC '{label}' falló sin excepción.")

    def broadcast_endpoints(self) -> List[Web3Endpoint]:
        return [Web3Endpoint(f"rpc{i + 1}", w3) for i, w3 in enumerate(self._http)]

    # ---------- eventos ----------
    async def subscribe_pair_created(self) -> AsyncIterator[PairCreatedEvent]:
        """Flujo infinito de PairCreated de la factory (push, vía WS)."""
        if not self._ws:
            raise ConnectionError("WebSocket no conectado; llama a connect() primero.")
        factory = self._ws.eth.contract(address=Web3.to_checksum_address(self.config.factory_address), abi=FACTORY_ABI)
        sub_id = await self._ws.eth.subscribe("logs", {"address": factory.address, "topics": [PAIR_CREATED_TOPIC]})
        logger.info(f"Suscrito a PairCreated de {factory.address} (sub={sub_id})")
        try:
            async for msg in self._ws.socket.process_subscriptions():
                log = msg.get("result") if isinstance(msg, dict) else None
                if not log:
                    continue
                try:
                    ev = factory.events.PairCreated().process_log(log)
                except Exception as e:
                    logger.debug(f"Log no decodificable, saltado: {e}")
                    continue
                tx_hash = log.get("transactionHash")
                yield PairCreatedEvent(
                    token0=ev["args"]["token0"],
                    token1=ev["args"]["token1"],
                    pair_address=ev["args"]["pair"],
                    block_number=log.get("blockNumber"),
                    tx_hash=Web3.to_hex(tx_hash) if tx_hash else None,
                )
        finally:
            if self._ws:
                try:
                    await self._ws.eth.unsubscribe(sub_id)
                except Exception as e:
                    logger.debug(f"unsubscribe falló: {e}")

    # ---------- lecturas ----------
    async def get_reserves(self, pair_address: str, endpoint: int = 0) -> Tuple[int, int]:
        """(reserve0, reserve1) de un par, en un único intento contra ``endpoint``."""
        w3 = self._reader(endpoint)
        pair = w3.eth.contract(address=Web3.to_checksum_address(pair_address), abi=PAIR_ABI)
        r0, r1, _ = await pair.functions.getReserves().call()
        return int(r0), int(r1)

    async def get_token_info(self, token_address: str) -> TokenInfo:
        erc20 = self._reader(0).eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)
        name, symbol = await asyncio.gather(erc20.functions.name().call(), erc20.functions.symbol().call())
        return TokenInfo(name=name or "", symbol=symbol or "")

    async def token_balance(self, token_address: str, owner: Optional[str] = None) -> int:
        owner_cs = Web3.to_checksum_address(owner or self.wallet_address)
        token_cs = Web3.to_checksum_address(token_address)
        return int(await self._rpc_call(
            "balanceOf",
            lambda w3: w3.eth.contract(address=token_cs, abi=ERC20_ABI).functions.balanceOf(owner_cs).call(),
        ))

    async def allowance(self, token_address: str, spender: str, owner: Optional[str] = None) -> int:
        owner_cs = Web3.to_checksum_address(owner or self.wallet_address)
        spender_cs = Web3.to_checksum_address(spender)
        token_cs = Web3.to_checksum_address(token_address)
        return int(await self._rpc_call(
            "allowance",
            lambda w3: w3.eth.contract(address=token_cs, abi=ERC20_ABI).functions.allowance(owner_cs, spender_cs).call(),
        ))

    async def total_supply(self, token_address: str) -> int:
        token_cs = Web3.to_checksum_address(token_address)
        return int(await self._rpc_call(
            "totalSupply",
            lambda w3: w3.eth.contract(address=token_cs, abi=ERC20_ABI).functions.totalSupply().call(),
            retries=1,
        ))

    async def decimals(self, token_address: str) -> int:
        token_cs = Web3.to_checksum_address(token_address)
        return int(await self._rpc_call(
            "decimals",
            lambda w3: w3.eth.contract(address=token_cs, abi=ERC20_ABI).functions.decimals().call(),
            retries=1,
        ))

    async def get_code(self, address: str) -> bytes:
        addr = Web3.to_checksum_address(address)
        return bytes(await self._rpc_call("get_code", lambda w3: w3.eth.get_code(addr), retries=1))

    async def gas_price(self) -> int:
        return int(await self._rpc_call("gas_price", lambda w3: w3.eth.gas_price))

    async def pending_nonce(self) -> int:
        return int(await self._rpc_call(
            "get_transaction_count",
            lambda w3: w3.eth.get_transaction_count(self.wallet_address, "pending"),
        ))

    async def native_balance(self) -> int:
        return int(await self._rpc_call("get_balance", lambda w3: w3.eth.get_balance(self.wallet_address)))

    async def chain_id(self) -> int:
        return int(await self._rpc_call("chain_id", lambda w3: w3.eth.chain_id))

    @log_function
    async def wait_for_receipt(self, tx_hash: str, timeout: float = 90) -> Optional[Any]:
        """Receipt o None si no llega en ``timeout`` segundos."""
        try:
            return await self._reader(0).eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except (TimeExhausted, asyncio.TimeoutError):
            logger.error(f"Timeout de confirmación para {tx_hash} ({timeout}s)")
            return None

    # ---------- builders (sin RPC) ----------
    def _base_tx(self, to: str, data: str, gas_price: int, nonce: int, value: int = 0) -> dict[str, Any]:
        return {
            "to": to,
            "value": int(value),
            "data": data,
            "gas": int(self.config.gas_limit),
            "gasPrice": int(gas_price),
            "nonce": int(nonce),
            "chainId": int(self.config.chain_id),
        }

    def build_buy_tx(self, token_address: str, amount_in_wei: int, deadline: int, gas_price: int, nonce: int) -> dict[str, Any]:
        """swapExactETHForTokens con amountOutMin = 0 (se acepta cualquier salida)."""
        path = [self._wbnb_addr, Web3.to_checksum_address(token_address)]
        data = self._router.encode_abi("swapExactETHForTokens", args=[0, path, self.wallet_address, int(deadline)])
        return self._base_tx(self._router_addr, data, gas_price, nonce, value=amount_in_wei)

    def build_sell_tx(self, token_address: str, amount_in_raw: int, deadline: int, gas_price: int, nonce: int) -> dict[str, Any]:
        """swapExactTokensForETH con amountOutMin = 0."""
        path = [Web3.to_checksum_address(token_address), self._wbnb_addr]
        data = self._router.encode_abi(
            "swapExactTokensForETH", args=[int(amount_in_raw), 0, path, self.wallet_address, int(deadline)]
        )
        return self._base_tx(self._router_addr, data, gas_price, nonce)

    def build_approve_tx(self, token_address: str, spender: str, amount_raw: int, gas_price: int, nonce: int) -> dict[str, Any]:
        data = self._erc20_codec.encode_abi("approve", args=[Web3.to_checksum_address(spender), int(amount_raw)])
        return self._base_tx(Web3.to_checksum_address(token_address), data, gas_price, nonce)

    def sign(self, tx: dict[str, Any]) -> bytes:
        signed = self._account.sign_transaction(tx)
        return bytes(signed.raw_transaction)
