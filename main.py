# main.py
from __future__ import annotations
import asyncio
import signal
import sys

from orchestrators.sniper_orchestrator import SniperOrchestrator
from utils.config import load_config
from utils.errors import ConfigError
from utils.logger import logger_manager

logger = logger_manager.setup_logger(__name__)


def install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def shutdown(*_):
        logger.info("🛑 Señal de apagado recibida, deteniendo servicios...")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown)
        except NotImplementedError:
            # Windows: sólo signal.signal en el hilo principal
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(shutdown))


async def main() -> int:
    try:
        config = load_config()
    except ConfigError as e:
        logger.critical(f"❌ Configuración inválida: {e}")
        return 1

    logger.info("🚀 Iniciando BNB sniper (PairCreated → compra → monitor → venta)...")
    logger.debug(f"Config: {config.redacted()}")

    stop_event = asyncio.Event()
    install_signal_handlers(stop_event)

    orchestrator = SniperOrchestrator(config)
    await orchestrator.run_until(stop_event)
    # sin posiciones persistidas: lo abierto al parar queda en la wallet
    logger.info("✅ Apagado completado.")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
