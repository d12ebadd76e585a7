from __future__ import annotations

from pathlib import Path

from fundledger.testing.harness import LedgerHarness


def test_create_assigns_sequential_ids_and_records_fields(harness) -> None:
    harness.advance(7)

    r1 = harness.create("owner", goal=1_000_000, duration=100, metadata_ref="QmFirst")
    r2 = harness.create("other", goal=5, duration=1)

    assert r1["ok"] is True and r1["code"] == "ok"
    assert r1["campaign_id"] == 1
    assert r2["campaign_id"] == 2
    assert harness.ex.get_campaign_count() == 2

    c = harness.ex.get_campaign(1)
    assert c == {
        "campaign_id": 1,
        "owner": harness.account("owner"),
        "metadata_ref": "QmFirst",
        "goal": 1_000_000,
        "raised": 0,
        "deadline": 107,
        "claimed": False,
        "created_at": 7,
        "refund_enabled": True,
        "token": None,
    }
    assert harness.ex.get_backer_count(1) == 0


def test_create_emits_campaign_created_event(harness) -> None:
    r = harness.create("owner", goal=10, duration=5)
    assert r["events"] == [
        {
            "event": "campaign-created",
            "campaign_id": 1,
            "owner": harness.account("owner"),
            "goal": 10,
            "deadline": 5,
        }
    ]
    assert harness.ex.list_campaign_events(1) == r["events"]


def test_create_rejects_non_positive_goal_and_duration(harness) -> None:
    r = harness.create("owner", goal=0, duration=10)
    assert r["ok"] is False
    assert r["error"]["code"] == "InvalidAmount"
    assert r["error"]["numeric"] == 106

    r = harness.create("owner", goal=10, duration=0)
    assert r["ok"] is False
    assert r["error"]["code"] == "InvalidAmount"

    r = harness.create("owner", goal=-5, duration=10)
    assert r["error"]["code"] == "InvalidAmount"

    # No id was consumed by the failures.
    assert harness.ex.get_campaign_count() == 0
    assert harness.create("owner", goal=10, duration=10)["campaign_id"] == 1


def test_create_rejects_bad_metadata_refs(harness) -> None:
    for ref in ["", "x" * 65, "café", "tab\there"]:
        r = harness.create("owner", goal=10, duration=10, metadata_ref=ref)
        assert r["ok"] is False, ref
        assert r["error"]["code"] == "InvalidMetadataRef"
        assert r["error"]["numeric"] == 105

    # Exactly at the bound is fine.
    r = harness.create("owner", goal=10, duration=10, metadata_ref="x" * 64)
    assert r["ok"] is True


def test_create_strict_cid_mode(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("FUNDLEDGER_MODE", "dev")
    h = LedgerHarness(db_path=str(tmp_path / "strict.db"), strict_metadata_cid=True)

    r = h.create("owner", goal=10, duration=10, metadata_ref="not-a-cid")
    assert r["error"]["code"] == "InvalidMetadataRef"

    cid_v0 = "Qm" + "a" * 44
    assert h.create("owner", goal=10, duration=10, metadata_ref=cid_v0)["ok"] is True


def test_failed_create_still_consumes_nonce(harness) -> None:
    signer = harness.account("owner")
    assert harness.ex.next_nonce(signer) == 1

    r = harness.create("owner", goal=0, duration=10)
    assert r["ok"] is False
    assert harness.ex.next_nonce(signer) == 2

    # Replaying the same signed envelope is now a nonce error at admission.
    stale = harness.envelope("owner", "CAMPAIGN_CREATE", {"metadata_ref": "Qm", "goal": 1, "duration": 1}, nonce=1)
    r = harness.ex.submit_tx(stale)
    assert r["ok"] is False
    assert r["stage"] == "admission"
    assert r["error"]["code"] == "bad_nonce"
