from __future__ import annotations

import json
import os
from dataclasses import replace
from pathlib import Path

import pytest

from fundledger.runtime.chain_config import (
    apply_ledger_config_to_env,
    default_ledger_config,
    ledger_config_from_env,
    load_ledger_config,
    validate_ledger_config,
)


def _good(**kw):
    base = replace(default_ledger_config(), fee_rate_bps=500, admin_account="admin-key")
    return replace(base, **kw)


def test_defaults_need_an_explicit_fee_and_admin() -> None:
    with pytest.raises(ValueError, match="fee_rate_bps"):
        validate_ledger_config(default_ledger_config())
    with pytest.raises(ValueError, match="admin_account"):
        validate_ledger_config(replace(default_ledger_config(), fee_rate_bps=500))
    validate_ledger_config(_good())


@pytest.mark.parametrize(
    "overrides",
    [
        {"chain_id": " "},
        {"node_id": ""},
        {"mode": "staging"},
        {"db_path": ""},
        {"fee_rate_bps": -1},
        {"fee_rate_bps": 10_001},
        {"custody_account": ""},
        {"custody_account": "admin-key"},
        {"metadata_ref_max_len": 0},
        {"metadata_ref_max_len": 2_000},
        {"clock": "sundial"},
        {"clock": "manual"},
        {"block_interval_ms": 100},
        {"genesis_ms": -1},
        {"api_port": 0},
        {"allow_unsigned_txs": True},
    ],
)
def test_validation_rejects_unsafe_settings(overrides) -> None:
    # Default mode is prod, which also forbids manual clocks and unsigned txs.
    with pytest.raises(ValueError):
        validate_ledger_config(_good(**overrides))


def test_dev_mode_allows_manual_clock_and_unsigned() -> None:
    validate_ledger_config(_good(mode="dev", clock="manual", allow_unsigned_txs=True))


def test_fee_rate_bounds_are_inclusive() -> None:
    validate_ledger_config(_good(fee_rate_bps=0))
    validate_ledger_config(_good(fee_rate_bps=10_000))


def test_from_env_mapping() -> None:
    env = {
        "FUNDLEDGER_CHAIN_ID": "env-chain",
        "FUNDLEDGER_MODE": "TESTNET",
        "FUNDLEDGER_FEE_RATE_BPS": "250",
        "FUNDLEDGER_ADMIN_ACCOUNT": "ops",
        "FUNDLEDGER_ACCEPTED_TOKEN": "USDX",
        "FUNDLEDGER_STRICT_METADATA_CID": "yes",
        "FUNDLEDGER_API_PORT": "9000",
    }
    cfg = ledger_config_from_env(env)
    assert cfg.chain_id == "env-chain"
    assert cfg.mode == "testnet"
    assert cfg.fee_rate_bps == 250
    assert cfg.admin_account == "ops"
    assert cfg.accepted_token == "USDX"
    assert cfg.strict_metadata_cid is True
    assert cfg.api_port == 9000
    assert cfg.custody_account == "fundledger:custody"


def test_from_env_rejects_non_integer_fee() -> None:
    with pytest.raises(ValueError):
        ledger_config_from_env({"FUNDLEDGER_FEE_RATE_BPS": "five", "FUNDLEDGER_ADMIN_ACCOUNT": "ops"})


def test_config_file_takes_precedence(tmp_path: Path, monkeypatch) -> None:
    p = tmp_path / "ledger.json"
    p.write_text(json.dumps({"chain_id": "file-chain", "fee_rate_bps": 100, "admin_account": "ops"}), encoding="utf-8")
    monkeypatch.setenv("FUNDLEDGER_CONFIG_PATH", str(p))
    monkeypatch.setenv("FUNDLEDGER_CHAIN_ID", "env-chain")

    cfg = load_ledger_config()
    assert cfg.chain_id == "file-chain"
    assert cfg.fee_rate_bps == 100


def test_apply_config_to_env(monkeypatch) -> None:
    # Registered with monkeypatch so the values written below are undone.
    for k in ("FUNDLEDGER_CHAIN_ID", "FUNDLEDGER_NODE_ID", "FUNDLEDGER_MODE", "FUNDLEDGER_DB_PATH", "FUNDLEDGER_LOG_LEVEL"):
        monkeypatch.setenv(k, "unset")
    apply_ledger_config_to_env(_good(chain_id="c1", mode="dev", db_path="/tmp/x.db"))
    assert os.environ["FUNDLEDGER_CHAIN_ID"] == "c1"
    assert os.environ["FUNDLEDGER_MODE"] == "dev"
    assert os.environ["FUNDLEDGER_DB_PATH"] == "/tmp/x.db"
