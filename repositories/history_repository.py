# repositories/history_repository.py
from __future__ import annotations
import os
import sqlite3
import time
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from models.position import Position
from utils.logger import logger_manager

logger = logger_manager.setup_logger(__name__)


class HistoryRepository:
    """
    Diario de operaciones (UNA fila por posición intentada).
    - Precios escalados y saldos se guardan como TEXT: son u256 y no caben en INTEGER.
    - outcome = MonitorOutcome.value; exit_reason = SellReason.value (si hubo venta).
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        folder = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(folder, exist_ok=True)
        self._ensure_table()

    @contextmanager
    def _conn(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_table(self) -> None:
        with self._conn() as c:
            c.execute("""
            CREATE TABLE IF NOT EXISTS history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                token_address  TEXT NOT NULL,
                pair_address   TEXT NOT NULL,
                symbol         TEXT,
                name           TEXT,
                -- COMPRA
                buy_tx_hash         TEXT,
                entry_price_scaled  TEXT,
                token_balance       TEXT,
                opened_at           INTEGER,
                -- VENTA
                sell_tx_hash        TEXT,
                exit_price_scaled   TEXT,
                exit_reason         TEXT,
                -- RESULTADO
                outcome     TEXT,
                error       TEXT,
                closed_at   INTEGER
            )
            """)
            c.commit()

    def open_position(self, position: Position) -> int:
        """Registra la compra confirmada. Devuelve history_id."""
        with self._conn() as c:
            cur = c.execute("""
                INSERT INTO history (
                    token_address, pair_address, symbol, name,
                    buy_tx_hash, entry_price_scaled, token_balance, opened_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                position.token, position.pair_address, position.symbol, position.name,
                position.buy_tx_hash, str(position.entry_price_scaled),
                str(position.token_balance), int(position.opened_at),
            ))
            c.commit()
            return int(cur.lastrowid)

    def close_position(
        self,
        history_id: int,
        outcome: str,
        exit_reason: Optional[str] = None,
        sell_tx_hash: Optional[str] = None,
        exit_price_scaled: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        with self._conn() as c:
            c.execute("""
                UPDATE history
                   SET outcome = ?, exit_reason = ?, sell_tx_hash = ?,
                       exit_price_scaled = ?, error = ?, closed_at = ?
                 WHERE id = ?
            """, (
                outcome, exit_reason, sell_tx_hash,
                str(exit_price_scaled) if exit_price_scaled is not None else None,
                error, int(time.time()), int(history_id),
            ))
            c.commit()

    def record_failure(
        self,
        token_address: str,
        pair_address: str,
        outcome: str,
        buy_tx_hash: Optional[str] = None,
        error: Optional[str] = None,
        symbol: Optional[str] = None,
        name: Optional[str] = None,
    ) -> int:
        """Intento que nunca llegó a ser posición (compra fallida, sin tokens, sin precio)."""
        now = int(time.time())
        with self._conn() as c:
            cur = c.execute("""
                INSERT INTO history (
                    token_address, pair_address, symbol, name,
                    buy_tx_hash, opened_at, outcome, error, closed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (token_address, pair_address, symbol, name, buy_tx_hash, now, outcome, error, now))
            c.commit()
            return int(cur.lastrowid)

    def list_recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        with self._conn() as c:
            rows = c.execute(
                "SELECT * FROM history ORDER BY id DESC LIMIT ?", (int(limit),)
            ).fetchall()
            return [dict(r) for r in rows]
