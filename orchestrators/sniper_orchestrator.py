# orchestrators/sniper_orchestrator.py
from __future__ import annotations
import asyncio
import sqlite3
from typing import Optional, Set

from controllers.buy_controller import BuyExecutor
from controllers.pair_filter_controller import PairEventFilter
from controllers.sell_controller import SellExecutor
from enums.monitor_state import MonitorOutcome
from models.pair_event import PairCreatedEvent, SnipeTarget
from models.trade_result import SwapResult
from orchestrators.monitor_orchestrator import SellMonitor
from repositories.history_repository import HistoryRepository
from repositories.state_repository import TradeGate
from services.broadcast_service import MultiEndpointBroadcaster
from services.gas_service import GasPolicy
from services.honeypot_service import HoneypotService
from services.market_service import ReserveOracle
from services.nonce_service import NonceManager
from services.web3_service import Web3Service
from utils.config import BotConfig
from utils.errors import MonitorCrash
from utils.logger import logger_manager, log_function
from utils.web3_utils import format_wei

logger = logger_manager.setup_logger(__name__)

RESUBSCRIBE_DELAY_SEC = 5.0


class SniperOrchestrator:
    """
    Cableado del bot sobre un único event loop:
      - escucha PairCreated y lanza UNA tarea por evento (filtro → compra → monitor)
      - el gate admite una sola operación; se libera SIEMPRE en el finally del ciclo
      - bucle de deriva de nonce cada NONCE_SYNC_INTERVAL_SEC
    """

    def __init__(
        self,
        config: BotConfig,
        gateway=None,
        gate: Optional[TradeGate] = None,
        journal: Optional[HistoryRepository] = None,
    ) -> None:
        self.config = config
        self.gateway = gateway if gateway is not None else Web3Service(config)
        self.gate = gate or TradeGate()
        if journal is None and config.journal_db_path:
            journal = HistoryRepository(config.journal_db_path)
        self.journal = journal

        self.nonces = NonceManager(self.gateway.pending_nonce)
        self.gas = GasPolicy(
            self.gateway.gas_price,
            default_wei=config.default_gas_price_wei,
            multiplier=config.gas_price_multiplier,
            max_wei=config.max_gas_price_wei,
        )
        self.oracle = ReserveOracle(self.gateway, call_timeout=config.metadata_timeout_sec)
        self.broadcaster = MultiEndpointBroadcaster(self.gateway.broadcast_endpoints())

        honeypot = None
        if config.honeypot_check:
            honeypot = HoneypotService(self.gateway, chain_id=config.chain_id, use_goplus=config.goplus_check)
        self.pair_filter = PairEventFilter(
            base_token=config.wbnb_address,
            gateway=self.gateway,
            oracle=self.oracle,
            gate=self.gate,
            min_liquidity_wei=config.min_liquidity_wei,
            name_keywords=config.token_name_keywords,
            metadata_timeout=config.metadata_timeout_sec,
            honeypot=honeypot,
        )

        tx_args = (self.gateway, self.broadcaster, self.nonces, self.gas)
        tx_kwargs = dict(broadcast_timeout_ms=config.broadcast_timeout_ms, dry_run=config.dry_run)
        self.buyer = BuyExecutor(*tx_args, **tx_kwargs)
        self.seller = SellExecutor(
            *tx_args,
            router_address=config.router_address,
            deadline_seconds=config.sell_deadline_seconds,
            **tx_kwargs,
        )

        self._handlers: Set[asyncio.Task] = set()
        self._listener: Optional[asyncio.Task] = None
        self._nonce_task: Optional[asyncio.Task] = None
        self._stopping = False

    # ---------- arranque / parada ----------
    @log_function
    async def start(self) -> None:
        if self._listener and not self._listener.done():
            return
        self._stopping = False
        await self.gateway.connect()
        nonce = await self.nonces.resync()
        balance = await self.gateway.native_balance()
        logger.info(f"Wallet {self.config.wallet_address} | saldo {format_wei(balance)} BNB | nonce {nonce}")
        logger.info(f"Compra por snipe: {self.config.send_bnb} BNB | DRY_RUN={self.config.dry_run}")

        self._listener = asyncio.create_task(self._listen(), name="pair-listener")
        self._nonce_task = asyncio.create_task(self._nonce_loop(), name="nonce-sync")
        logger.info("SniperOrchestrator iniciado.")

    async def stop(self) -> None:
        self._stopping = True
        tasks = [t for t in (self._listener, self._nonce_task, *self._handlers) if t is not None and not t.done()]
        for t in tasks:
            t.cancel()
        # los finally de cada ciclo liberan el gate
        await asyncio.gather(*tasks, return_exceptions=True)
        self.gate.listening = False
        await self.gateway.close()
        self.gate.log_status()
        logger.info("SniperOrchestrator detenido.")

    async def run_until(self, stop_event: asyncio.Event) -> None:
        await self.start()
        try:
            waiter = asyncio.create_task(stop_event.wait())
            await asyncio.wait({waiter, self._listener}, return_when=asyncio.FIRST_COMPLETED)
            waiter.cancel()
        finally:
            await self.stop()

    # ---------- eventos ----------
    async def _listen(self) -> None:
        while not self._stopping:
            try:
                self.gate.listening = True
                self.gate.log_status()
                async for event in self.gateway.subscribe_pair_created():
                    self.dispatch(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Suscripción PairCreated caída: {e}")
            self.gate.listening = False
            if self._stopping:
                break
            await asyncio.sleep(RESUBSCRIBE_DELAY_SEC)
            try:
                await self.gateway.connect()
            except Exception as e:
                logger.error(f"Reconexión WS fallida: {e}")

    def dispatch(self, event: PairCreatedEvent) -> asyncio.Task:
        """Una tarea por evento; la suscripción nunca espera al handler."""
        task = asyncio.create_task(self._handle(event), name=f"pair-{event.pair_address}")
        self._handlers.add(task)
        task.add_done_callback(self._handlers.discard)
        return task

    async def _handle(self, event: PairCreatedEvent) -> None:
        try:
            target = await self.pair_filter.evaluate(event)
            if target is not None:
                await self.run_lifecycle(target)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"[{event.pair_address}] Error en handler: {e}")

    # ---------- ciclo de una posición ----------
    async def run_lifecycle(self, target: SnipeTarget) -> MonitorOutcome:
        """Compra + monitor. El gate (ya adquirido por el filtro) se libera al salir."""
        outcome = MonitorOutcome.CRASHED
        try:
            buy = await self.buyer.execute_swap(
                target.token,
                self.config.buy_amount_wei,
                deadline_minutes=self.config.deadline_minutes,
                use_competitive_gas=self.config.competitive_gas,
            )
            if not buy.success:
                outcome = MonitorOutcome.BUY_FAILED
                self._record_buy_failure(target, buy)
                return outcome
            if self.config.dry_run:
                outcome = MonitorOutcome.DRY_RUN
                logger.info(f"[DRY_RUN] {target.symbol}: compra simulada, no se monitoriza")
                return outcome

            outcome = await self.new_monitor(target, buy).run()
            return outcome
        except asyncio.CancelledError:
            outcome = MonitorOutcome.CANCELLED
            raise
        except Exception as e:
            crash = MonitorCrash(f"{target.token}: {e}")
            logger.exception(f"💥 {crash}")
            outcome = MonitorOutcome.CRASHED
            return outcome
        finally:
            self.gate.release(outcome.value)

    def new_monitor(self, target: SnipeTarget, buy: SwapResult) -> SellMonitor:
        return SellMonitor(
            target,
            buy,
            gateway=self.gateway,
            oracle=self.oracle,
            seller=self.seller,
            min_liquidity_wei=self.config.min_liquidity_wei,
            take_profit_pct=self.config.take_profit_pct,
            trailing_stop_pct=self.config.trailing_stop_pct,
            max_hold_seconds=self.config.max_hold_seconds,
            interval=self.config.monitor_interval_sec,
            receipt_timeout=self.config.receipt_timeout_sec,
            journal=self.journal,
        )

    def _record_buy_failure(self, target: SnipeTarget, buy: SwapResult) -> None:
        if self.journal is None:
            return
        try:
            self.journal.record_failure(
                target.token, target.pair_address, MonitorOutcome.BUY_FAILED.value,
                error=buy.error, symbol=target.symbol, name=target.name,
            )
        except sqlite3.Error as e:
            logger.error(f"No se pudo escribir en el diario: {e}")

    # ---------- nonce ----------
    async def _nonce_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.nonce_sync_interval_sec)
            try:
                await self.nonces.reconcile()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug(f"Sync de nonce falló: {e}")
