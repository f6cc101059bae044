import asyncio

import pytest

from services.nonce_service import NonceManager


class _Chain:
    def __init__(self, pending):
        self.pending = pending

    async def pending_nonce(self):
        return self.pending


def test_current_requires_a_sync():
    nonces = NonceManager(_Chain(3).pending_nonce)
    with pytest.raises(RuntimeError):
        _ = nonces.current


def test_commit_advances_past_used_nonce_only():
    nonces = NonceManager(_Chain(3).pending_nonce)
    asyncio.run(nonces.resync())

    assert nonces.commit(3) == 4
    # un commit antiguo no hace retroceder el contador
    assert nonces.commit(1) == 4


def test_reconcile_only_moves_forward():
    chain = _Chain(5)
    nonces = NonceManager(chain.pending_nonce)
    asyncio.run(nonces.resync())
    nonces.commit(5)
    nonces.commit(6)

    chain.pending = 6
    assert asyncio.run(nonces.reconcile()) is False
    assert nonces.current == 7

    chain.pending = 9
    assert asyncio.run(nonces.reconcile()) is True
    assert nonces.current == 9


def test_resync_follows_chain_both_ways():
    chain = _Chain(10)
    nonces = NonceManager(chain.pending_nonce)
    asyncio.run(nonces.resync())
    chain.pending = 8
    assert asyncio.run(nonces.resync()) == 8
    assert nonces.current == 8
