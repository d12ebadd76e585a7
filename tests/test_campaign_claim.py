from __future__ import annotations

from pathlib import Path

from fundledger.testing.harness import LedgerHarness


def test_claim_pays_owner_minus_five_percent_fee(funded) -> None:
    h = funded
    h.create("owner", goal=1_000_000, duration=100)
    h.donate("alice", 1, 600_000)
    h.donate("bob", 1, 400_000)

    r = h.claim("owner", 1)
    assert r["ok"] is True
    assert r["result"]["payout"] == 950_000
    assert r["result"]["fee"] == 50_000
    assert r["events"] == [
        {"event": "funds-claimed", "campaign_id": 1, "owner": h.account("owner"), "payout": 950_000, "fee": 50_000}
    ]

    assert h.balance("owner") == 950_000
    # The fee stays in custody, earmarked in the fee pool.
    assert h.balance(h.custody) == 50_000
    assert h.ex.get_total_fees() == 50_000
    c = h.ex.get_campaign(1)
    assert c["claimed"] is True
    assert c["raised"] == 1_000_000
    assert h.ex.check_invariants() == []


def test_claim_at_two_percent(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("FUNDLEDGER_MODE", "dev")
    h = LedgerHarness(db_path=str(tmp_path / "two.db"), fee_rate_bps=200)
    h.fund("alice", 1_000_000)
    h.create("owner", goal=1_000_000, duration=10)
    h.donate("alice", 1, 1_000_000)

    r = h.claim("owner", 1)
    assert (r["result"]["payout"], r["result"]["fee"]) == (980_000, 20_000)
    assert h.ex.calculate_fee(1_000_000) == 20_000


def test_claim_with_zero_fee_rate(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("FUNDLEDGER_MODE", "dev")
    h = LedgerHarness(db_path=str(tmp_path / "zero.db"), fee_rate_bps=0)
    h.fund("alice", 10)
    h.create("owner", goal=10, duration=10)
    h.donate("alice", 1, 10)

    r = h.claim("owner", 1)
    assert (r["result"]["payout"], r["result"]["fee"]) == (10, 0)
    assert h.ex.get_total_fees() == 0


def test_claim_with_full_fee_rate_skips_payout_transfer(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("FUNDLEDGER_MODE", "dev")
    h = LedgerHarness(db_path=str(tmp_path / "full.db"), fee_rate_bps=10_000)
    h.fund("alice", 10)
    h.create("owner", goal=10, duration=10)
    h.donate("alice", 1, 10)
    n_transfers = len(h.transfers.transfers)

    r = h.claim("owner", 1)
    assert (r["result"]["payout"], r["result"]["fee"]) == (0, 10)
    assert len(h.transfers.transfers) == n_transfers
    assert h.ex.get_campaign(1)["claimed"] is True


def test_claim_error_order(funded) -> None:
    h = funded
    assert h.claim("owner", 1)["error"]["code"] == "CampaignNotFound"

    h.create("owner", goal=1_000, duration=10)

    r = h.claim("alice", 1)
    assert r["error"]["code"] == "NotOwner"
    assert r["error"]["numeric"] == 100

    r = h.claim("owner", 1)
    assert r["error"]["code"] == "GoalNotMet"
    assert r["error"]["numeric"] == 103

    h.donate("alice", 1, 1_000)
    assert h.claim("owner", 1)["ok"] is True

    r = h.claim("owner", 1)
    assert r["error"]["code"] == "AlreadyClaimed"
    assert r["error"]["numeric"] == 102
    # Paid out once only.
    assert h.balance("owner") == 950


def test_claim_does_not_wait_for_deadline(funded) -> None:
    h = funded
    h.create("owner", goal=500, duration=1_000)
    h.donate("alice", 1, 500)
    assert h.ex.is_expired(1) is False
    assert h.ex.can_claim(1) is True
    assert h.claim("owner", 1)["ok"] is True
    assert h.ex.can_claim(1) is False


def test_claim_after_expiry_when_goal_was_met(funded) -> None:
    h = funded
    h.create("owner", goal=500, duration=5)
    h.donate("alice", 1, 700)
    h.advance(50)
    r = h.claim("owner", 1)
    assert r["ok"] is True
    assert r["result"]["payout"] == 665
    assert r["result"]["fee"] == 35


def test_failed_payout_transfer_rolls_back_claim(funded) -> None:
    h = funded
    h.create("owner", goal=100, duration=10)
    h.donate("alice", 1, 100)
    h.transfers.paused_tokens.add(h.token)

    r = h.claim("owner", 1)
    assert r["error"]["code"] == "TransferFailed"
    assert h.ex.get_campaign(1)["claimed"] is False
    assert h.ex.get_total_fees() == 0

    h.transfers.paused_tokens.clear()
    assert h.claim("owner", 1)["ok"] is True
