import asyncio
import time
from decimal import Decimal

from controllers.buy_controller import BuyExecutor
from controllers.tx_controller import DRY_RUN_TX_HASH
from services.broadcast_service import MultiEndpointBroadcaster
from services.gas_service import GasPolicy
from services.nonce_service import NonceManager
from tests.fakes import E18, TOKEN, TX_HASH, FakeEndpoint


def _executor(chain, dry_run=False):
    nonces = NonceManager(chain.pending_nonce)
    gas = GasPolicy(chain.gas_price, default_wei=50_000_000, multiplier=Decimal("1.5"), max_wei=10 ** 10)
    buyer = BuyExecutor(chain, MultiEndpointBroadcaster(chain.broadcast_endpoints()), nonces, gas,
                        broadcast_timeout_ms=500, dry_run=dry_run)
    asyncio.run(nonces.resync())
    return buyer, nonces


def test_successful_buy_commits_nonce(chain):
    buyer, nonces = _executor(chain)

    result = asyncio.run(buyer.execute_swap(TOKEN, E18 // 100))

    assert result.success is True
    assert result.tx_hash == TX_HASH
    assert result.nonce == 7
    assert result.gas_price == 50_000_000
    assert nonces.current == 8
    assert chain.nonces_of("buy") == [7]


def test_deadline_is_absolute(chain):
    buyer, _ = _executor(chain)
    before = int(time.time())

    asyncio.run(buyer.execute_swap(TOKEN, E18 // 100, deadline_minutes=3))

    deadline = chain.built[-1]["deadline"]
    assert before + 180 <= deadline <= int(time.time()) + 180


def test_competitive_gas_uses_network_price(chain):
    buyer, _ = _executor(chain)

    result = asyncio.run(buyer.execute_swap(TOKEN, E18 // 100, use_competitive_gas=True))

    assert result.gas_price == 1_500_000_000


def test_failed_broadcast_does_not_consume_nonce(chain):
    chain.endpoints = [FakeEndpoint("rpc1", error="insufficient funds for gas")]
    buyer, nonces = _executor(chain)

    result = asyncio.run(buyer.execute_swap(TOKEN, E18 // 100))

    assert result.success is False
    assert "insufficient funds" in result.error
    assert nonces.current == 7


def test_nonce_conflict_triggers_resync(chain):
    chain.endpoints = [FakeEndpoint("rpc1", error="nonce too low")]
    buyer, nonces = _executor(chain)
    # la cadena ya va por delante (tx enviada fuera del bot)
    chain.pending = 12

    result = asyncio.run(buyer.execute_swap(TOKEN, E18 // 100))

    assert result.success is False
    assert result.nonce == 7
    assert nonces.current == 12


def test_dry_run_signs_but_does_not_broadcast(chain):
    buyer, nonces = _executor(chain, dry_run=True)

    result = asyncio.run(buyer.execute_swap(TOKEN, E18 // 100))

    assert result.success is True
    assert result.tx_hash == DRY_RUN_TX_HASH
    assert chain.endpoints[0].calls == 0
    assert nonces.current == 7
