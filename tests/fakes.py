"""In-memory stand-ins for the chain gateway and RPC endpoints."""

import asyncio

from models.pair_event import PairCreatedEvent, SnipeTarget, TokenInfo
from models.trade_result import SwapResult
from utils.config import BotConfig

WBNB = "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c"
ROUTER = "0x10ED43C718714eb63d5aA57B78B54704E256024E"
TOKEN = "0x1111111111111111111111111111111111111111"
OTHER = "0x3333333333333333333333333333333333333333"
PAIR = "0x2222222222222222222222222222222222222222"
TEST_KEY = "0x" + "11" * 32
TX_HASH = "0x" + "ab" * 32

E18 = 10 ** 18


def make_config(**overrides):
    values = dict(
        private_key=TEST_KEY,
        ws_provider_url="ws://localhost:8546",
        rpc_urls="http://localhost:8545",
        send_bnb="0.01",
        dry_run=False,
        journal_db_path="",
        monitor_interval_sec=3600,
        nonce_sync_interval_sec=3600,
        max_hold_seconds=0,
    )
    values.update(overrides)
    return BotConfig(**values)


def pair_event(token0=WBNB, token1=TOKEN, pair=PAIR):
    return PairCreatedEvent(token0=token0, token1=token1, pair_address=pair, block_number=1)


def snipe_target(token=TOKEN, symbol="RKT"):
    # token0 = WBNB → el token es la segunda pata, reservas (base, token) = (r0, r1)
    return SnipeTarget(token=token, pair_address=PAIR, token_is_second_leg=True,
                       name="Rocket", symbol=symbol, liquidity_wei=20 * E18)


def buy_result(tx_hash=TX_HASH, nonce=7):
    return SwapResult(success=True, tx_hash=tx_hash, nonce=nonce, gas_price=50_000_000)


class FakeEndpoint:
    def __init__(self, name, delay=0.0, error=None, tx_hash=TX_HASH, on_accept=None):
        self.name = name
        self.delay = delay
        self.error = error
        self.tx_hash = tx_hash
        self.on_accept = on_accept
        self.calls = 0

    async def send_raw_transaction(self, raw_tx):
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.error:
            raise RuntimeError(self.error)
        if self.on_accept:
            self.on_accept(raw_tx)
        return self.tx_hash


class FakeChain:
    """
    Gateway en memoria. ``reserves`` puede ser una tupla, una excepción o una
    lista (se consume en orden y el último valor se queda fijo).
    Cada tx aceptada por un endpoint avanza el nonce pendiente de la cadena.
    """

    endpoint_count = 1

    def __init__(self):
        self.pending = 7
        self.reserves = (10 * E18, 1000 * E18)
        self.balance = 500 * E18
        self.allowance_value = 10 ** 30
        self.receipt = {"status": 1, "blockNumber": 123}
        self.receipt_delay = 0.0
        self.info = TokenInfo(name="Rocket", symbol="RKT")
        self.info_error = None
        self.info_delay = 0.0
        self.supply = 10 ** 27
        self.code = b"\x60\x80"
        self.network_gas = 1_000_000_000
        self.built = []
        self._seen = set()
        self.endpoints = [FakeEndpoint("rpc1", on_accept=self.accept)]

    def accept(self, raw_tx):
        if raw_tx not in self._seen:
            self._seen.add(raw_tx)
            self.pending += 1

    def broadcast_endpoints(self):
        return list(self.endpoints)

    async def connect(self):
        return None

    async def close(self):
        return None

    async def pending_nonce(self):
        return self.pending

    async def gas_price(self):
        return self.network_gas

    async def native_balance(self):
        return 5 * E18

    async def get_reserves(self, pair_address, endpoint=0):
        await asyncio.sleep(0)
        value = self.reserves
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if isinstance(value, Exception):
            raise value
        return value

    async def get_token_info(self, token_address):
        if self.info_delay:
            await asyncio.sleep(self.info_delay)
        if self.info_error:
            raise self.info_error
        return self.info

    async def decimals(self, token_address):
        return 18

    async def total_supply(self, token_address):
        return self.supply

    async def get_code(self, address):
        return self.code

    async def token_balance(self, token_address, owner=None):
        return self.balance

    async def allowance(self, token_address, spender, owner=None):
        return self.allowance_value

    async def wait_for_receipt(self, tx_hash, timeout=90):
        if self.receipt_delay:
            await asyncio.sleep(self.receipt_delay)
        return self.receipt

    def _tx(self, kind, to, gas_price, nonce, **extra):
        tx = {"kind": kind, "to": to, "gasPrice": gas_price, "nonce": nonce, **extra}
        self.built.append(tx)
        return tx

    def build_buy_tx(self, token_address, amount_in_wei, deadline, gas_price, nonce):
        return self._tx("buy", ROUTER, gas_price, nonce, value=amount_in_wei, deadline=deadline)

    def build_sell_tx(self, token_address, amount_in_raw, deadline, gas_price, nonce):
        return self._tx("sell", ROUTER, gas_price, nonce, amount=amount_in_raw, deadline=deadline)

    def build_approve_tx(self, token_address, spender, amount_raw, gas_price, nonce):
        return self._tx("approve", token_address, gas_price, nonce, amount=amount_raw, spender=spender)

    def sign(self, tx):
        return f"{tx['kind']}:{tx['nonce']}".encode().hex().encode()

    def nonces_of(self, kind):
        return [tx["nonce"] for tx in self.built if tx["kind"] == kind]


class FakeSeller:
    def __init__(self, success=True, delay=0.0):
        self.success = success
        self.delay = delay
        self.calls = []

    async def sell(self, position):
        self.calls.append(position.token)
        await asyncio.sleep(self.delay)
        if self.success:
            return SwapResult(success=True, tx_hash="0x" + "cd" * 32, nonce=8)
        return SwapResult(success=False, error="execution reverted")
