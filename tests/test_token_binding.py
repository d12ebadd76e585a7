from __future__ import annotations

JUNK = "JUNK"


def test_refund_pays_out_in_the_token_that_was_donated(funded) -> None:
    h = funded
    h.fund("alice", 500, token=JUNK)
    h.create("owner", goal=10_000, duration=10)

    assert h.donate("alice", 1, 500, token=JUNK)["ok"] is True
    assert h.ex.get_campaign(1)["token"] == JUNK

    r = h.donate("carol", 1, 500)
    assert r["ok"] is False
    assert r["error"]["code"] == "TokenMismatch"
    assert r["error"]["numeric"] == 111
    assert r["error"]["details"] == {"campaign_id": 1, "token": h.token, "campaign_token": JUNK}
    assert h.balance("carol") == 10_000_000
    assert h.balance(h.custody) == 0

    h.advance(11)
    r = h.refund("alice", 1)
    assert r["error"]["code"] == "TokenMismatch"
    assert h.balance("alice") == 10_000_000

    r = h.refund("alice", 1, token=JUNK)
    assert r["ok"] is True
    assert r["result"]["refunded"] == 500
    assert h.balance("alice", token=JUNK) == 500
    assert h.balance(h.custody, token=JUNK) == 0
    assert h.ex.check_invariants() == []


def test_create_can_bind_the_token_up_front(funded) -> None:
    h = funded
    h.fund("alice", 100, token=JUNK)
    r = h.create("owner", goal=1_000, duration=10, token=h.token)
    assert r["ok"] is True
    assert h.ex.get_campaign(1)["token"] == h.token

    r = h.donate("alice", 1, 100, token=JUNK)
    assert r["error"]["code"] == "TokenMismatch"
    assert h.ex.get_campaign(1)["raised"] == 0
    assert h.ex.get_backer_count(1) == 0

    assert h.donate("alice", 1, 100)["ok"] is True


def test_claim_must_name_the_campaign_token(funded) -> None:
    h = funded
    h.create("owner", goal=1_000, duration=10)
    h.donate("alice", 1, 1_000)

    r = h.claim("owner", 1, token=JUNK)
    assert r["error"]["code"] == "TokenMismatch"
    assert h.ex.get_campaign(1)["claimed"] is False

    r = h.claim("owner", 1)
    assert r["result"]["payout"] == 950
    assert h.balance("owner") == 950


def test_fee_pools_are_kept_per_token(funded) -> None:
    h = funded
    h.fund("bob", 500, token=JUNK)
    h.create("owner", goal=1_000, duration=10)
    h.donate("alice", 1, 1_000)
    h.create("owner", goal=500, duration=10)
    h.donate("bob", 2, 500, token=JUNK)
    h.claim("owner", 1)
    h.claim("owner", 2, token=JUNK)

    assert h.ex.get_fee_pools() == {JUNK: 25, h.token: 50}
    assert h.ex.get_total_fees() == 75

    r = h.withdraw_fees("admin")
    assert r["result"]["withdrawn"] == 50
    assert h.balance("admin") == 50
    assert h.balance("admin", token=JUNK) == 0
    assert h.ex.get_fee_pools() == {JUNK: 25}

    again = h.withdraw_fees("admin")
    assert again["error"]["reason"] == "fee_pool_empty"
    assert again["error"]["details"] == {"token": h.token, "fee_pool": 0}

    assert h.withdraw_fees("admin", token=JUNK)["result"]["withdrawn"] == 25
    assert h.balance("admin", token=JUNK) == 25
    assert h.ex.get_total_fees() == 0
    assert h.ex.check_invariants() == []
