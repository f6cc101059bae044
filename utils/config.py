"""
Configuration loading for the sniper.

Sources, lowest to highest priority: model defaults, an optional
``config.yaml`` next to ``main.py`` and the process environment (a ``.env``
file is loaded first if present). The result is validated once at startup;
anything missing or malformed raises :class:`ConfigError`, which is fatal.
"""

from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml  # type: ignore
from dotenv import load_dotenv
from eth_account import Account
from pydantic import BaseModel, ValidationError, field_validator, model_validator
from web3 import Web3

from utils.errors import ConfigError

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# ENV -> campo del modelo
_ENV_KEYS: Dict[str, str] = {
    "PRIVATE_KEY": "private_key",
    "WALLET_ADDRESS": "wallet_address",
    "WS_PROVIDER_URL": "ws_provider_url",
    "RPC_URLS": "rpc_urls",
    "CHAIN_ID": "chain_id",
    "WBNB_ADDRESS": "wbnb_address",
    "PANCAKE_FACTORY_ADDRESS": "factory_address",
    "PANCAKE_ROUTER_ADDRESS": "router_address",
    "SEND_BNB": "send_bnb",
    "GAS_LIMIT": "gas_limit",
    "DEFAULT_GAS_PRICE_GWEI": "default_gas_price_gwei",
    "GAS_PRICE_MULTIPLIER": "gas_price_multiplier",
    "MAX_GAS_PRICE_GWEI": "max_gas_price_gwei",
    "COMPETITIVE_GAS": "competitive_gas",
    "DEADLINE_MINUTES": "deadline_minutes",
    "SELL_DEADLINE_SECONDS": "sell_deadline_seconds",
    "TAKE_PROFIT_PCT": "take_profit_pct",
    "TRAILING_STOP_PCT": "trailing_stop_pct",
    "MAX_HOLD_SECONDS": "max_hold_seconds",
    "MIN_LIQUIDITY_BNB": "min_liquidity_bnb",
    "TOKEN_NAME_CONTAINS": "token_name_keywords",
    "HONEYPOT_CHECK": "honeypot_check",
    "GOPLUS_CHECK": "goplus_check",
    "MONITOR_INTERVAL_SEC": "monitor_interval_sec",
    "NONCE_SYNC_INTERVAL_SEC": "nonce_sync_interval_sec",
    "BROADCAST_TIMEOUT_MS": "broadcast_timeout_ms",
    "RECEIPT_TIMEOUT_SEC": "receipt_timeout_sec",
    "METADATA_TIMEOUT_SEC": "metadata_timeout_sec",
    "JOURNAL_DB_PATH": "journal_db_path",
    "DRY_RUN": "dry_run",
}

_REQUIRED_ENV = ("PRIVATE_KEY", "WS_PROVIDER_URL", "RPC_URLS", "SEND_BNB")


def _split_csv(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v).strip() for v in value if str(v).strip()]


class BotConfig(BaseModel):
    private_key: str
    wallet_address: Optional[str] = None
    ws_provider_url: str
    rpc_urls: List[str]
    chain_id: int = 56

    wbnb_address: str = "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c"
    factory_address: str = "0xcA143Ce32Fe78f1f7019d7d551a6402fC5350c73"   # PancakeSwap V2 Factory
    router_address: str = "0x10ED43C718714eb63d5aA57B78B54704E256024E"    # PancakeSwap V2 Router

    send_bnb: Decimal
    gas_limit: int = 300_000
    default_gas_price_gwei: Decimal = Decimal("0.05")
    gas_price_multiplier: Decimal = Decimal("1.5")
    max_gas_price_gwei: Decimal = Decimal("10")
    competitive_gas: bool = False
    deadline_minutes: int = 3
    sell_deadline_seconds: int = 300

    take_profit_pct: float = 5.0
    trailing_stop_pct: float = 0.0        # 0 = desactivado
    max_hold_seconds: int = 600           # 0 = sin límite de tiempo
    min_liquidity_bnb: Decimal = Decimal("0")
    token_name_keywords: List[str] = []
    honeypot_check: bool = False
    goplus_check: bool = False

    monitor_interval_sec: float = 1.0
    nonce_sync_interval_sec: float = 8.0
    broadcast_timeout_ms: int = 5000
    receipt_timeout_sec: int = 90
    metadata_timeout_sec: float = 3.0

    journal_db_path: str = str(PROJECT_ROOT / "data" / "sniper.db")
    dry_run: bool = True

    # ---------- validadores ----------
    @field_validator("private_key")
    @classmethod
    def _check_private_key(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith("0x"):
            raise ValueError("Private key must start with 0x")
        if len(v) != 66:
            raise ValueError("Invalid private key length")
        try:
            int(v, 16)
        except ValueError:
            raise ValueError("Private key must be hexadecimal") from None
        return v

    @field_validator("rpc_urls", "token_name_keywords", mode="before")
    @classmethod
    def _csv(cls, v: Any) -> List[str]:
        return _split_csv(v)

    @field_validator("rpc_urls")
    @classmethod
    def _check_rpc_urls(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("at least one broadcast endpoint is required")
        return [u.rstrip("/") for u in v]

    @field_validator("wbnb_address", "factory_address", "router_address")
    @classmethod
    def _check_address(cls, v: str) -> str:
        if not Web3.is_address(v):
            raise ValueError(f"invalid address: {v}")
        return Web3.to_checksum_address(v)

    @field_validator("wallet_address", mode="before")
    @classmethod
    def _check_optional_address(cls, v: Any) -> Optional[str]:
        if v is None or str(v).strip() == "":
            return None
        if not Web3.is_address(str(v).strip()):
            raise ValueError(f"invalid address: {v}")
        return Web3.to_checksum_address(str(v).strip())

    @field_validator("send_bnb")
    @classmethod
    def _check_spend(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("SEND_BNB must be greater than zero")
        return v

    @field_validator("gas_price_multiplier", "max_gas_price_gwei", "default_gas_price_gwei")
    @classmethod
    def _check_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("gas settings must be greater than zero")
        return v

    @model_validator(mode="after")
    def _check_wallet_matches_key(self) -> "BotConfig":
        derived = Account.from_key(self.private_key).address
        if self.wallet_address and self.wallet_address != derived:
            raise ValueError("WALLET_ADDRESS does not match PRIVATE_KEY")
        self.wallet_address = derived
        return self

    # ---------- derivados ----------
    @property
    def buy_amount_wei(self) -> int:
        return int(Web3.to_wei(self.send_bnb, "ether"))

    @property
    def min_liquidity_wei(self) -> int:
        return int(Web3.to_wei(self.min_liquidity_bnb, "ether"))

    @property
    def default_gas_price_wei(self) -> int:
        return int(Web3.to_wei(self.default_gas_price_gwei, "gwei"))

    @property
    def max_gas_price_wei(self) -> int:
        return int(Web3.to_wei(self.max_gas_price_gwei, "gwei"))

    def redacted(self) -> Dict[str, Any]:
        """Volcado apto para logs (sin clave privada)."""
        data = self.model_dump()
        data["private_key"] = "0x…" + self.private_key[-4:]
        return data


def load_yaml_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load overrides from ``config.yaml``.

    Keys may be written either as model fields (``take_profit_pct``) or as
    their environment names (``TAKE_PROFIT_PCT``). Missing files quietly
    yield an empty dictionary.
    """
    path = Path(config_path) if config_path else PROJECT_ROOT / "config.yaml"
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return {_ENV_KEYS.get(str(k).upper(), str(k).lower()): v for k, v in raw.items()}


def _from_env(env: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for env_key, field in _ENV_KEYS.items():
        raw = env.get(env_key)
        if raw is not None and str(raw).strip() != "":
            values[field] = raw.strip()
    # compat: un único endpoint HTTP
    if "rpc_urls" not in values and (env.get("RPC_PROVIDER_URL") or "").strip():
        values["rpc_urls"] = env["RPC_PROVIDER_URL"].strip()
    return values


def load_config(
    env: Optional[Mapping[str, str]] = None,
    config_path: Optional[Path] = None,
) -> BotConfig:
    """Build and validate the configuration. Raises :class:`ConfigError`."""
    if env is None:
        load_dotenv()
        env = os.environ

    values = load_yaml_config(config_path)
    values.update(_from_env(env))

    missing = [k for k in _REQUIRED_ENV if values.get(_ENV_KEYS[k]) in (None, "", [])]
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    try:
        return BotConfig(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}") from e
