# diagnostics.py
"""
Comprobación rápida antes de arrancar el bot: configuración, conectividad
WS/HTTP, chain id, saldo BNB, nonce pendiente y diario de operaciones.
Uso: ``python diagnostics.py``
"""
from __future__ import annotations
import asyncio
import sys

from repositories.history_repository import HistoryRepository
from services.web3_service import Web3Service
from utils.config import load_config
from utils.errors import ConfigError
from utils.logger import logger_manager
from utils.web3_utils import format_wei

logger = logger_manager.setup_logger("diagnostics")


def ok(b, msg): print(("✅" if b else "❌"), msg)


async def check_endpoints(gateway: Web3Service) -> bool:
    all_ok = True
    try:
        await gateway.connect()
        ok(True, f"WebSocket OK: {gateway.config.ws_provider_url}")
    except Exception as e:
        ok(False, f"WebSocket fallo: {e}")
        all_ok = False

    for idx, ep in enumerate(gateway.broadcast_endpoints()):
        url = gateway.config.rpc_urls[idx]
        try:
            block = await ep.block_number()
            ok(True, f"HTTP {ep.name} OK ({url}) bloque={block}")
        except Exception as e:
            ok(False, f"HTTP {ep.name} fallo ({url}): {e}")
            all_ok = False
    return all_ok


async def run() -> int:
    print("== DIAGNÓSTICO BNB SNIPER ==")
    try:
        config = load_config()
    except ConfigError as e:
        ok(False, f"Configuración: {e}")
        return 1
    ok(True, f"Configuración OK (wallet {config.wallet_address}, DRY_RUN={config.dry_run})")

    gateway = Web3Service(config)
    failures = 0
    try:
        if not await check_endpoints(gateway):
            failures += 1

        try:
            chain = await gateway.chain_id()
            ok(int(chain) == int(config.chain_id), f"chain_id={chain} (esperado {config.chain_id})")
        except Exception as e:
            ok(False, f"chain_id fallo: {e}")
            failures += 1

        try:
            balance = await gateway.native_balance()
            enough = balance >= config.buy_amount_wei
            ok(enough, f"Saldo: {format_wei(balance)} BNB (compra {config.send_bnb} BNB)")
            failures += 0 if enough else 1
        except Exception as e:
            ok(False, f"Saldo fallo: {e}")
            failures += 1

        try:
            ok(True, f"Nonce pendiente: {await gateway.pending_nonce()}")
        except Exception as e:
            ok(False, f"Nonce fallo: {e}")
            failures += 1
    finally:
        await gateway.close()

    if config.journal_db_path:
        try:
            rows = HistoryRepository(config.journal_db_path).list_recent(limit=5)
            ok(True, f"Diario OK: {config.journal_db_path} ({len(rows)} filas recientes)")
            for r in rows:
                print(f"   {r['id']} {r['symbol']} {r['outcome']} {r['exit_reason'] or ''}")
        except Exception as e:
            ok(False, f"Diario fallo: {e}")
            failures += 1

    print("== FIN ==")
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(run()))
