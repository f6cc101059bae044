import asyncio

import pytest

from enums.monitor_state import MonitorOutcome, MonitorState, SellReason
from orchestrators.monitor_orchestrator import SellMonitor
from services.market_service import ReserveOracle
from tests.fakes import E18, FakeSeller, buy_result, snipe_target
from utils.errors import MonitorCrash


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _monitor(chain, seller=None, **kwargs):
    oracle = ReserveOracle(chain, rounds=1, round_delay=0, call_timeout=1)
    kwargs.setdefault("interval", 3600)
    kwargs.setdefault("max_hold_seconds", 0)
    return SellMonitor(snipe_target(), buy_result(), gateway=chain, oracle=oracle,
                       seller=seller or FakeSeller(), **kwargs)


async def _until_monitoring(monitor):
    for _ in range(1000):
        if monitor.state is MonitorState.MONITORING:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"monitor stuck in {monitor.state}")


def test_overlapping_ticks_sell_at_most_once(chain):
    seller = FakeSeller(delay=0.01)
    monitor = _monitor(chain, seller)

    async def scenario():
        run = asyncio.create_task(monitor.run())
        await _until_monitoring(monitor)
        chain.reserves = (20 * E18, 1000 * E18)          # precio x2
        fired = await asyncio.gather(*(monitor.tick() for _ in range(5)))
        return fired, await run

    fired, outcome = asyncio.run(scenario())

    assert [f for f in fired if f is not None] == [SellReason.TAKE_PROFIT]
    assert seller.calls == [snipe_target().token]
    assert outcome is MonitorOutcome.SOLD
    assert monitor.state is MonitorState.DONE


def test_liquidity_drop_takes_precedence_over_profit(chain):
    monitor = _monitor(chain, min_liquidity_wei=15 * E18)

    async def scenario():
        run = asyncio.create_task(monitor.run())
        await _until_monitoring(monitor)
        # precio x5 pero liquidez 10 BNB < 15 BNB
        chain.reserves = (5 * E18, 100 * E18)
        await monitor.tick()
        return await run

    assert asyncio.run(scenario()) is MonitorOutcome.SOLD
    assert monitor.sell_reason is SellReason.LIQUIDITY_DROP


def test_below_target_keeps_monitoring_and_tracks_peak(chain):
    monitor = _monitor(chain, take_profit_pct=50)

    async def scenario():
        run = asyncio.create_task(monitor.run())
        await _until_monitoring(monitor)
        chain.reserves = (12 * E18, 1000 * E18)          # +20 %
        fired = await monitor.tick()
        run.cancel()
        try:
            await run
        except asyncio.CancelledError:
            pass
        return fired

    assert asyncio.run(scenario()) is None
    assert monitor.position.sold is False
    assert monitor.position.peak_price_scaled == 12 * 10 ** 21
    assert monitor.outcome is MonitorOutcome.CANCELLED


def test_trailing_stop_fires_below_peak(chain):
    monitor = _monitor(chain, take_profit_pct=100, trailing_stop_pct=10)

    async def scenario():
        run = asyncio.create_task(monitor.run())
        await _until_monitoring(monitor)
        chain.reserves = (15 * E18, 1000 * E18)          # pico +50 %
        assert await monitor.tick() is None
        chain.reserves = (13 * E18, 1000 * E18)          # -13 % desde el pico
        fired = await monitor.tick()
        await run
        return fired

    assert asyncio.run(scenario()) is SellReason.TRAILING_STOP


def test_time_limit_fires_even_without_price(chain):
    clock = _Clock()
    monitor = _monitor(chain, max_hold_seconds=60, clock=clock)

    async def scenario():
        run = asyncio.create_task(monitor.run())
        await _until_monitoring(monitor)
        chain.reserves = RuntimeError("rpc down")
        assert await monitor.tick() is None
        clock.now += 61
        fired = await monitor.tick()
        await run
        return fired

    assert asyncio.run(scenario()) is SellReason.TIME_LIMIT


def test_failed_sell_abandons_position(chain):
    monitor = _monitor(chain, seller=FakeSeller(success=False))

    async def scenario():
        run = asyncio.create_task(monitor.run())
        await _until_monitoring(monitor)
        chain.reserves = (20 * E18, 1000 * E18)
        await monitor.tick()
        outcome = await run
        # ya vendido/abandonado: más ticks no hacen nada
        assert await monitor.tick() is None
        return outcome

    assert asyncio.run(scenario()) is MonitorOutcome.SELL_FAILED


def test_background_ticker_triggers_sell(chain):
    chain.reserves = [(10 * E18, 1000 * E18), (20 * E18, 1000 * E18)]
    monitor = _monitor(chain, interval=0.01)

    assert asyncio.run(asyncio.wait_for(monitor.run(), timeout=2)) is MonitorOutcome.SOLD
    assert monitor.sell_reason is SellReason.TAKE_PROFIT


def test_reverted_buy_ends_without_monitoring(chain):
    chain.receipt = {"status": 0}
    assert asyncio.run(_monitor(chain).run()) is MonitorOutcome.BUY_REVERTED


def test_missing_receipt_counts_as_reverted(chain):
    chain.receipt = None
    assert asyncio.run(_monitor(chain).run()) is MonitorOutcome.BUY_REVERTED


def test_zero_balance_ends_with_no_tokens(chain):
    chain.balance = 0
    assert asyncio.run(_monitor(chain).run()) is MonitorOutcome.NO_TOKENS


def test_unreadable_price_ends_with_no_price(chain):
    chain.reserves = (0, 0)
    assert asyncio.run(_monitor(chain).run()) is MonitorOutcome.NO_PRICE


class _BrokenCloseJournal:
    """Diario que abre la posición pero revienta al cerrarla."""

    def open_position(self, position):
        return 1

    def close_position(self, history_id, outcome, **kwargs):
        raise RuntimeError("disk gone")


def test_error_after_selling_surfaces_instead_of_hanging(chain):
    chain.reserves = [(10 * E18, 1000 * E18), (20 * E18, 1000 * E18)]
    seller = FakeSeller()
    monitor = _monitor(chain, seller, interval=0.01, journal=_BrokenCloseJournal())

    with pytest.raises(MonitorCrash):
        asyncio.run(asyncio.wait_for(monitor.run(), timeout=2))

    assert seller.calls == [monitor.target.token]
    assert monitor.state is MonitorState.DONE
    assert monitor.outcome is MonitorOutcome.SOLD
