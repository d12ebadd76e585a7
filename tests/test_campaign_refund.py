from __future__ import annotations


def _expired_unfunded(h):
    h.create("owner", goal=1_000_000, duration=10)
    h.donate("alice", 1, 500)
    h.donate("bob", 1, 300)
    h.advance(11)
    return h


def test_refund_returns_full_contribution(funded) -> None:
    h = _expired_unfunded(funded)
    alice = h.account("alice")

    assert h.ex.can_refund(1, alice) is True
    r = h.refund("alice", 1)
    assert r["ok"] is True
    assert r["result"]["refunded"] == 500
    assert r["events"] == [
        {"event": "refund-issued", "campaign_id": 1, "donor": alice, "amount": 500, "new_total": 300}
    ]

    assert h.balance("alice") == 10_000_000
    assert h.balance(h.custody) == 300
    # The record keeps the historical amount and is marked refunded.
    assert h.ex.get_donation(1, alice) == {"amount": 500, "refunded": True}
    assert h.ex.get_campaign(1)["raised"] == 300
    assert h.ex.get_refund_stats(1) == {"total_refunded": 500, "refund_count": 1}
    assert h.ex.get_backer_count(1) == 2
    assert h.ex.can_refund(1, alice) is False
    assert h.ex.check_invariants() == []


def test_refund_twice_is_rejected(funded) -> None:
    h = _expired_unfunded(funded)
    assert h.refund("alice", 1)["ok"] is True

    r = h.refund("alice", 1)
    assert r["error"]["code"] == "AlreadyRefunded"
    assert r["error"]["numeric"] == 109
    assert h.balance("alice") == 10_000_000
    assert h.ex.get_refund_stats(1)["refund_count"] == 1


def test_refund_before_deadline_is_not_available(funded) -> None:
    h = funded
    h.create("owner", goal=1_000_000, duration=10)
    h.donate("alice", 1, 500)
    h.advance(10)  # at the deadline, not past it

    r = h.refund("alice", 1)
    assert r["error"]["code"] == "RefundNotAvailable"
    assert r["error"]["numeric"] == 110


def test_refund_when_goal_met_is_not_available(funded) -> None:
    h = funded
    h.create("owner", goal=500, duration=10)
    h.donate("alice", 1, 500)
    h.advance(100)

    assert h.ex.can_refund(1, h.account("alice")) is False
    assert h.refund("alice", 1)["error"]["code"] == "RefundNotAvailable"


def test_refund_for_non_donor(funded) -> None:
    h = _expired_unfunded(funded)
    r = h.refund("carol", 1)
    assert r["error"]["code"] == "InvalidAmount"
    assert h.ex.get_refund_stats(1) == {"total_refunded": 0, "refund_count": 0}


def test_refund_unknown_campaign(funded) -> None:
    assert funded.refund("alice", 9)["error"]["code"] == "CampaignNotFound"


def test_all_donors_refunded_drains_custody(funded) -> None:
    h = _expired_unfunded(funded)
    h.refund("alice", 1)
    h.refund("bob", 1)

    assert h.ex.get_campaign(1)["raised"] == 0
    assert h.balance(h.custody) == 0
    assert h.ex.get_refund_stats(1) == {"total_refunded": 800, "refund_count": 2}
    assert h.ex.campaign_status(1)["status"] == "expired_unfunded"


def test_refund_transfer_failure_keeps_record_refundable(funded) -> None:
    h = _expired_unfunded(funded)
    h.transfers.paused_tokens.add(h.token)

    r = h.refund("alice", 1)
    assert r["error"]["code"] == "TransferFailed"
    assert h.ex.get_donation(1, h.account("alice"))["refunded"] is False

    h.transfers.paused_tokens.clear()
    assert h.refund("alice", 1)["ok"] is True
