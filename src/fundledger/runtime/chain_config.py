# src/fundledger/runtime/chain_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _as_opt_int(v: Any, default: Optional[int]) -> Optional[int]:
    if v is None or (isinstance(v, str) and not v.strip()):
        return default
    if isinstance(v, bool):
        raise ValueError("expected an integer, got a boolean")
    try:
        return int(v)
    except Exception as e:
        raise ValueError(f"expected an integer, got {v!r}") from e


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


@dataclass(frozen=True)
class LedgerConfig:
    chain_id: str
    node_id: str
    mode: str  # "dev" | "testnet" | "prod"

    # Single SQLite DB file path for snapshot, receipts and token balances.
    db_path: str

    # Platform fee in basis points. There is deliberately no default:
    # every deployment states its rate.
    fee_rate_bps: Optional[int]
    admin_account: str
    custody_account: str
    accepted_token: str

    metadata_ref_max_len: int
    strict_metadata_cid: bool

    clock: str  # "interval" | "manual"
    block_interval_ms: int
    genesis_ms: int  # 0 = first boot time

    api_host: str
    api_port: int

    allow_unsigned_txs: bool

    log_level: str


_ALLOWED_MODES = {"dev", "testnet", "prod"}
_ALLOWED_CLOCKS = {"interval", "manual"}


def validate_ledger_config(cfg: LedgerConfig) -> None:
    """Fail-fast validation for operator config.

    Prevent silent misconfiguration that could put a node into an unsafe
    posture or an unusable state.
    """

    if not isinstance(cfg.chain_id, str) or not cfg.chain_id.strip():
        raise ValueError("chain_id must be a non-empty string")

    if not isinstance(cfg.node_id, str) or not cfg.node_id.strip():
        raise ValueError("node_id must be a non-empty string")

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    if not isinstance(cfg.db_path, str) or not cfg.db_path.strip():
        raise ValueError("db_path must be a non-empty string")

    if cfg.fee_rate_bps is None:
        raise ValueError("fee_rate_bps must be set explicitly (e.g. 500 for 5%)")
    if int(cfg.fee_rate_bps) < 0 or int(cfg.fee_rate_bps) > 10_000:
        raise ValueError(f"fee_rate_bps must be 0..10000; got: {cfg.fee_rate_bps}")

    if not str(cfg.admin_account or "").strip():
        raise ValueError("admin_account must be set")
    if not str(cfg.custody_account or "").strip():
        raise ValueError("custody_account must be a non-empty string")
    if cfg.custody_account == cfg.admin_account:
        raise ValueError("custody_account must differ from admin_account")

    if int(cfg.metadata_ref_max_len) < 1 or int(cfg.metadata_ref_max_len) > 1024:
        raise ValueError(f"metadata_ref_max_len must be 1..1024; got: {cfg.metadata_ref_max_len}")

    clock = str(cfg.clock or "").strip().lower()
    if clock not in _ALLOWED_CLOCKS:
        raise ValueError(f"clock must be one of {_ALLOWED_CLOCKS}; got: {cfg.clock!r}")
    if clock == "manual" and mode == "prod":
        # A manual clock never advances on its own, so deadlines would never pass.
        raise ValueError("clock=manual is not allowed in prod mode")
    if int(cfg.block_interval_ms) < 250:
        raise ValueError(f"block_interval_ms must be >= 250; got: {cfg.block_interval_ms}")
    if int(cfg.genesis_ms) < 0:
        raise ValueError(f"genesis_ms must be >= 0; got: {cfg.genesis_ms}")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")

    if cfg.allow_unsigned_txs and mode == "prod":
        raise ValueError("allow_unsigned_txs is not allowed in prod mode")


def default_ledger_config() -> LedgerConfig:
    return LedgerConfig(
        chain_id="fundledger-dev",
        node_id="local-node",
        # Production-safe default: an unconfigured node must not drop into a
        # permissive development posture.
        mode="prod",
        db_path="./data/fundledger.db",
        fee_rate_bps=None,
        admin_account="",
        custody_account="fundledger:custody",
        accepted_token="",
        metadata_ref_max_len=64,
        strict_metadata_cid=False,
        clock="interval",
        block_interval_ms=10_000,
        genesis_ms=0,
        api_host="127.0.0.1",
        api_port=8080,
        allow_unsigned_txs=False,
        log_level="INFO",
    )


def _from_mapping(raw: Mapping[str, Any], d: LedgerConfig) -> LedgerConfig:
    return LedgerConfig(
        chain_id=_as_str(raw.get("chain_id"), d.chain_id),
        node_id=_as_str(raw.get("node_id"), d.node_id),
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        fee_rate_bps=_as_opt_int(raw.get("fee_rate_bps"), d.fee_rate_bps),
        admin_account=_as_str(raw.get("admin_account"), d.admin_account).strip(),
        custody_account=_as_str(raw.get("custody_account"), d.custody_account).strip(),
        accepted_token=_as_str(raw.get("accepted_token"), d.accepted_token).strip(),
        metadata_ref_max_len=_as_int(raw.get("metadata_ref_max_len"), d.metadata_ref_max_len),
        strict_metadata_cid=_as_bool(raw.get("strict_metadata_cid"), d.strict_metadata_cid),
        clock=_as_str(raw.get("clock"), d.clock).strip().lower(),
        block_interval_ms=_as_int(raw.get("block_interval_ms"), d.block_interval_ms),
        genesis_ms=_as_int(raw.get("genesis_ms"), d.genesis_ms),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        allow_unsigned_txs=_as_bool(raw.get("allow_unsigned_txs"), d.allow_unsigned_txs),
        log_level=_as_str(raw.get("log_level"), d.log_level).upper(),
    )


def read_ledger_config_file(path: str) -> LedgerConfig:
    p = Path(path)
    raw = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("ledger config must be a JSON object")

    cfg = _from_mapping(raw, default_ledger_config())
    validate_ledger_config(cfg)
    return cfg


_ENV_FIELDS = (
    "chain_id",
    "node_id",
    "mode",
    "db_path",
    "fee_rate_bps",
    "admin_account",
    "custody_account",
    "accepted_token",
    "metadata_ref_max_len",
    "strict_metadata_cid",
    "clock",
    "block_interval_ms",
    "genesis_ms",
    "api_host",
    "api_port",
    "allow_unsigned_txs",
    "log_level",
)


def ledger_config_from_env(environ: Optional[Mapping[str, str]] = None) -> LedgerConfig:
    env = os.environ if environ is None else environ
    raw = {name: env.get("FUNDLEDGER_" + name.upper()) for name in _ENV_FIELDS}
    cfg = _from_mapping(raw, default_ledger_config())
    validate_ledger_config(cfg)
    return cfg


def load_ledger_config(*, config_path: Optional[str] = None) -> LedgerConfig:
    p = config_path or os.environ.get("FUNDLEDGER_CONFIG_PATH")
    if p:
        return read_ledger_config_file(p)
    return ledger_config_from_env()


def apply_ledger_config_to_env(cfg: LedgerConfig) -> None:
    """Expose the settings that env-driven helpers (sqlite pragmas, logging) read."""
    validate_ledger_config(cfg)
    os.environ["FUNDLEDGER_CHAIN_ID"] = cfg.chain_id
    os.environ["FUNDLEDGER_NODE_ID"] = cfg.node_id
    os.environ["FUNDLEDGER_MODE"] = (cfg.mode or "prod").strip().lower()
    os.environ["FUNDLEDGER_DB_PATH"] = cfg.db_path
    os.environ["FUNDLEDGER_LOG_LEVEL"] = cfg.log_level
