# orchestrators/monitor_orchestrator.py
from __future__ import annotations
import asyncio
import sqlite3
import time
from decimal import Decimal
from typing import Callable, Optional

from controllers.sell_controller import SellExecutor
from enums.monitor_state import MonitorOutcome, MonitorState, SellReason
from models.pair_event import SnipeTarget
from models.position import Position
from models.trade_result import SwapResult
from repositories.history_repository import HistoryRepository
from services.market_service import PRICE_SCALE, ReserveOracle, scaled_price, total_liquidity_wei
from utils.errors import MonitorCrash
from utils.logger import logger_manager, log_function
from utils.web3_utils import format_scaled, format_wei

logger = logger_manager.setup_logger(__name__)


def _bps(pct) -> int:
    """Porcentaje → puntos básicos enteros (5 → 500)."""
    return int(Decimal(str(pct)) * 100)


class SellMonitor:
    """
    Máquina de estados de UNA posición:
        AWAITING_BUY_CONFIRMATION → MONITORING → SELLING → DONE
    Criterios de salida por tick, en orden de prioridad:
        1) caída de liquidez bajo el mínimo
        2) (actualiza pico)
        3) take profit
        4) trailing stop (opcional)
        5) tiempo máximo de tenencia (opcional; se evalúa aunque no haya precio)
    El paso a SELLING ocurre como mucho una vez y cancela el tick periódico.
    """

    def __init__(
        self,
        target: SnipeTarget,
        buy: SwapResult,
        gateway,
        oracle: ReserveOracle,
        seller: SellExecutor,
        min_liquidity_wei: int = 0,
        take_profit_pct: float = 5.0,
        trailing_stop_pct: float = 0.0,
        max_hold_seconds: float = 600,
        interval: float = 1.0,
        receipt_timeout: float = 90,
        journal: Optional[HistoryRepository] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.target = target
        self.buy = buy
        self.gateway = gateway
        self.oracle = oracle
        self.seller = seller
        self.min_liquidity_wei = int(min_liquidity_wei)
        self.take_profit_bps = _bps(take_profit_pct)
        self.trailing_stop_bps = _bps(trailing_stop_pct)
        self.max_hold_seconds = float(max_hold_seconds or 0)
        self.interval = float(interval)
        self.receipt_timeout = float(receipt_timeout)
        self.journal = journal
        self._clock = clock

        self.state = MonitorState.AWAITING_BUY_CONFIRMATION
        self.position: Optional[Position] = None
        self.sell_reason: Optional[SellReason] = None
        self.outcome: Optional[MonitorOutcome] = None
        self.sell_result: Optional[SwapResult] = None

        self._started_at = 0.0
        self._history_id: Optional[int] = None
        self._ticker: Optional[asyncio.Task] = None
        self._sell_task: Optional[asyncio.Task] = None
        self._done = asyncio.Event()

    @property
    def tag(self) -> str:
        return f"[{self.target.symbol or self.target.token}]"

    # ---------- ciclo de vida ----------
    @log_function
    async def run(self) -> MonitorOutcome:
        try:
            early = await self._confirm_buy()
            if early is not None:
                return self._finish(early)

            self.state = MonitorState.MONITORING
            self._started_at = self._clock()
            logger.info(
                f"{self.tag} 👀 Monitorizando: entrada={format_scaled(self.position.entry_price_scaled, PRICE_SCALE)} BNB/token "
                f"objetivo=+{self.take_profit_bps / 100:.2f}%"
            )
            self._ticker = asyncio.create_task(self._tick_loop(), name=f"tick-{self.target.token}")
            await self._done.wait()
            self._raise_if_sell_crashed()
            return self.outcome
        except asyncio.CancelledError:
            self._cancel_tasks()
            if self.outcome is None:
                self._finish(MonitorOutcome.CANCELLED)
            raise

    async def _confirm_buy(self) -> Optional[MonitorOutcome]:
        logger.info(f"{self.tag} ⏳ Esperando confirmación de compra {self.buy.tx_hash}")
        receipt = await self.gateway.wait_for_receipt(self.buy.tx_hash, timeout=self.receipt_timeout)
        if not receipt or int(receipt["status"]) != 1:
            logger.error(f"{self.tag} ❌ Compra revertida o sin confirmar: {self.buy.tx_hash}")
            return MonitorOutcome.BUY_REVERTED
        logger.info(f"{self.tag} ✅ Compra confirmada en bloque {receipt.get('blockNumber')}")

        balance = int(await self.gateway.token_balance(self.target.token))
        if balance <= 0:
            logger.error(f"{self.tag} ❌ Saldo de tokens = 0 tras la compra")
            return MonitorOutcome.NO_TOKENS

        reserves = await self.oracle.get_reserves(self.target.pair_address, self.target.token_is_second_leg)
        price = scaled_price(reserves.base, reserves.token) if reserves else 0
        if price <= 0:
            logger.error(f"{self.tag} ❌ No se pudo obtener precio de entrada")
            return MonitorOutcome.NO_PRICE

        self.position = Position(
            token=self.target.token,
            pair_address=self.target.pair_address,
            token_is_second_leg=self.target.token_is_second_leg,
            entry_price_scaled=price,
            peak_price_scaled=price,
            token_balance=balance,
            symbol=self.target.symbol,
            name=self.target.name,
            buy_tx_hash=self.buy.tx_hash or "",
            initial_liquidity_wei=total_liquidity_wei(reserves.base),
        )
        self._history_id = self._journal("open_position", self.position)
        return None

    # ---------- tick ----------
    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"{self.tag} Error en tick de monitor: {e}")

    async def tick(self) -> Optional[SellReason]:
        """Una evaluación. Devuelve el motivo si ESTE tick disparó la venta."""
        pos = self.position
        if pos is None or pos.sold or self.state is not MonitorState.MONITORING:
            return None

        reserves = await self.oracle.get_reserves(pos.pair_address, pos.token_is_second_leg)
        if pos.sold:
            return None

        held = self._clock() - self._started_at
        time_up = self.max_hold_seconds > 0 and held >= self.max_hold_seconds

        if reserves is None:
            if time_up:
                return self._begin_selling(SellReason.TIME_LIMIT, held=held)
            return None

        price = scaled_price(reserves.base, reserves.token)
        liquidity = total_liquidity_wei(reserves.base)

        if self.min_liquidity_wei > 0 and pos.initial_liquidity_wei > 0 and liquidity < self.min_liquidity_wei:
            logger.warning(f"{self.tag} 🚨 Liquidez {format_wei(liquidity)} BNB < mínimo {format_wei(self.min_liquidity_wei)} BNB")
            return self._begin_selling(SellReason.LIQUIDITY_DROP, price=price)

        if price <= 0:
            return self._begin_selling(SellReason.TIME_LIMIT, held=held) if time_up else None

        if price > pos.peak_price_scaled:
            pos.peak_price_scaled = price

        logger.debug(
            f"{self.tag} Precio={format_scaled(price, PRICE_SCALE)} | PnL={pos.gain_pct(price):.2f}% "
            f"| pico={format_scaled(pos.peak_price_scaled, PRICE_SCALE)}"
        )

        if price * 10_000 >= pos.entry_price_scaled * (10_000 + self.take_profit_bps):
            return self._begin_selling(SellReason.TAKE_PROFIT, price=price)

        if self.trailing_stop_bps > 0 and price * 10_000 <= pos.peak_price_scaled * (10_000 - self.trailing_stop_bps):
            return self._begin_selling(SellReason.TRAILING_STOP, price=price)

        if time_up:
            return self._begin_selling(SellReason.TIME_LIMIT, price=price, held=held)
        return None

    def _begin_selling(self, reason: SellReason, price: int = 0, held: float = 0.0) -> Optional[SellReason]:
        # sin await entre la comprobación y la marca: atómico dentro del loop
        pos = self.position
        if pos is None or pos.sold:
            return None
        pos.sold = True
        self.state = MonitorState.SELLING
        self.sell_reason = reason

        ticker, self._ticker = self._ticker, None
        if ticker is not None:
            ticker.cancel()

        detail = f"PnL={pos.gain_pct(price):.2f}%" if price else f"{held:.0f}s en posición"
        logger.info(f"{self.tag} 💰 VENTA disparada: {reason.value} ({detail})")
        self._sell_task = asyncio.create_task(self._sell(reason, price), name=f"sell-{pos.token}")
        return reason

    async def _sell(self, reason: SellReason, price: int) -> None:
        """Tarea de venta. Si algo falla tras vender, run() lo relanza como MonitorCrash."""
        try:
            result = await self.seller.sell(self.position)
        except Exception as e:
            logger.exception(f"{self.tag} Error inesperado vendiendo: {e}")
            result = SwapResult(success=False, error=str(e))
        self.sell_result = result
        outcome = MonitorOutcome.SOLD if result.success else MonitorOutcome.SELL_FAILED
        if not result.success:
            logger.error(f"{self.tag} ❌ Posición abandonada: {result.error}")
        self._finish(outcome, exit_price=price or None)

    # ---------- cierre ----------
    def _finish(self, outcome: MonitorOutcome, exit_price: Optional[int] = None) -> MonitorOutcome:
        self.outcome = outcome
        self.state = MonitorState.DONE
        try:
            self._record(outcome, exit_price)
        finally:
            # run() espera este evento; se marca pase lo que pase con el diario
            logger.info(f"{self.tag} 🏁 Monitor terminado: {outcome.value}")
            self._done.set()
        return outcome

    def _record(self, outcome: MonitorOutcome, exit_price: Optional[int]) -> None:
        if self._history_id is not None:
            self._journal(
                "close_position",
                self._history_id,
                outcome.value,
                exit_reason=self.sell_reason.value if self.sell_reason else None,
                sell_tx_hash=self.sell_result.tx_hash if self.sell_result else None,
                exit_price_scaled=exit_price,
                error=self.sell_result.error if self.sell_result else None,
            )
        elif outcome in (MonitorOutcome.BUY_REVERTED, MonitorOutcome.NO_TOKENS, MonitorOutcome.NO_PRICE):
            self._journal(
                "record_failure",
                self.target.token,
                self.target.pair_address,
                outcome.value,
                buy_tx_hash=self.buy.tx_hash,
                symbol=self.target.symbol,
                name=self.target.name,
            )

    def _raise_if_sell_crashed(self) -> None:
        task = self._sell_task
        if task is None or not task.done() or task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            raise MonitorCrash(f"{self.target.token}: tarea de venta falló: {exc}") from exc

    def _cancel_tasks(self) -> None:
        for task in (self._ticker, self._sell_task):
            if task is not None and not task.done():
                task.cancel()
        self._ticker = None

    def _journal(self, method: str, *args, **kwargs):
        if self.journal is None:
            return None
        try:
            return getattr(self.journal, method)(*args, **kwargs)
        except sqlite3.Error as e:
            logger.error(f"{self.tag} No se pudo escribir en el diario ({method}): {e}")
            return None
