from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "fundledger" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)


@pytest.fixture
def harness(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    from fundledger.testing.harness import LedgerHarness

    monkeypatch.setenv("FUNDLEDGER_MODE", "dev")
    return LedgerHarness(db_path=str(tmp_path / "fundledger.db"))


@pytest.fixture
def funded(harness):
    """Harness with three donors holding 10M units each."""
    for label in ("alice", "bob", "carol"):
        harness.fund(label, 10_000_000)
    return harness
