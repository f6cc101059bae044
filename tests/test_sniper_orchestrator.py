import asyncio

import pytest

from enums.monitor_state import MonitorOutcome
from orchestrators.sniper_orchestrator import SniperOrchestrator
from repositories.history_repository import HistoryRepository
from tests.fakes import E18, TOKEN, FakeEndpoint, pair_event, snipe_target


def _orchestrator(chain, config_factory, **overrides):
    orch = SniperOrchestrator(config_factory(**overrides), gateway=chain)
    asyncio.run(orch.nonces.resync())
    return orch


def _run_locked(orch, target=None):
    target = target or snipe_target()
    assert orch.gate.try_acquire(target.token)
    return asyncio.run(orch.run_lifecycle(target))


def test_full_cycle_sells_with_next_nonce(chain, config_factory):
    # lectura de entrada y, en el primer tick, precio x2
    chain.reserves = [(10 * E18, 1000 * E18), (20 * E18, 1000 * E18)]
    orch = _orchestrator(chain, config_factory, monitor_interval_sec=0.01)

    outcome = _run_locked(orch)

    assert outcome is MonitorOutcome.SOLD
    buy_nonce, = chain.nonces_of("buy")
    sell_nonce, = chain.nonces_of("sell")
    assert sell_nonce == buy_nonce + 1
    assert orch.gate.active is False


@pytest.mark.parametrize("setup, expected", [
    (lambda c: setattr(c, "endpoints", [FakeEndpoint("rpc1", error="insufficient funds")]), MonitorOutcome.BUY_FAILED),
    (lambda c: setattr(c, "receipt", {"status": 0}), MonitorOutcome.BUY_REVERTED),
    (lambda c: setattr(c, "balance", 0), MonitorOutcome.NO_TOKENS),
    (lambda c: setattr(c, "reserves", (0, 0)), MonitorOutcome.NO_PRICE),
])
def test_gate_released_on_early_outcomes(chain, config_factory, setup, expected):
    setup(chain)
    orch = _orchestrator(chain, config_factory)

    assert _run_locked(orch) is expected
    assert orch.gate.active is False
    assert orch.gate.target_token is None


def test_gate_released_when_sell_fails(chain, config_factory):
    chain.reserves = [(10 * E18, 1000 * E18), (20 * E18, 1000 * E18)]
    orch = _orchestrator(chain, config_factory, monitor_interval_sec=0.01)
    chain.allowance_value = 0

    async def reverting_receipt(tx_hash, timeout=90):
        # la compra confirma, el approve revierte
        return {"status": 1} if not chain.nonces_of("approve") else {"status": 0}

    chain.wait_for_receipt = reverting_receipt

    assert _run_locked(orch) is MonitorOutcome.SELL_FAILED
    assert orch.gate.active is False


def test_gate_released_when_monitor_crashes(chain, config_factory, monkeypatch):
    orch = _orchestrator(chain, config_factory)

    def explode(target, buy):
        raise RuntimeError("boom")

    monkeypatch.setattr(orch, "new_monitor", explode)

    assert _run_locked(orch) is MonitorOutcome.CRASHED
    assert orch.gate.active is False


def test_gate_released_on_cancellation(chain, config_factory):
    chain.receipt_delay = 30
    orch = _orchestrator(chain, config_factory)

    async def scenario():
        assert orch.gate.try_acquire(TOKEN)
        task = asyncio.create_task(orch.run_lifecycle(snipe_target()))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert orch.gate.active is False


def test_dry_run_buys_once_and_releases(chain, config_factory):
    orch = _orchestrator(chain, config_factory, dry_run=True)

    assert _run_locked(orch) is MonitorOutcome.DRY_RUN
    assert chain.endpoints[0].calls == 0
    assert orch.gate.active is False


def test_dispatch_runs_filter_and_lifecycle(chain, config_factory):
    chain.receipt = {"status": 0}
    orch = _orchestrator(chain, config_factory)

    async def scenario():
        await orch.dispatch(pair_event())

    asyncio.run(scenario())
    assert chain.nonces_of("buy") == [7]
    assert orch.gate.active is False


def test_failed_buy_is_journaled(chain, config_factory, tmp_path):
    chain.endpoints = [FakeEndpoint("rpc1", error="insufficient funds")]
    orch = _orchestrator(chain, config_factory, journal_db_path=str(tmp_path / "journal.db"))

    _run_locked(orch)

    rows = HistoryRepository(str(tmp_path / "journal.db")).list_recent()
    assert rows[0]["outcome"] == "buy_failed"
    assert "insufficient funds" in rows[0]["error"]


def test_gate_released_when_journal_breaks_after_sell(chain, config_factory, tmp_path):
    class BrokenJournal(HistoryRepository):
        def close_position(self, *args, **kwargs):
            raise RuntimeError("journal unavailable")

    chain.reserves = [(10 * E18, 1000 * E18), (20 * E18, 1000 * E18)]
    orch = SniperOrchestrator(config_factory(monitor_interval_sec=0.01), gateway=chain,
                              journal=BrokenJournal(str(tmp_path / "journal.db")))
    asyncio.run(orch.nonces.resync())
    assert orch.gate.try_acquire(TOKEN)

    outcome = asyncio.run(asyncio.wait_for(orch.run_lifecycle(snipe_target()), timeout=3))

    assert outcome is MonitorOutcome.CRASHED
    assert chain.nonces_of("sell") == [8]
    assert orch.gate.active is False
