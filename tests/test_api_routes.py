from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from fundledger.api.app import create_app
from fundledger.runtime.metrics import reset_metrics


@pytest.fixture
def client(funded):
    app = create_app(boot_runtime=False)
    app.state.executor = funded.ex
    with TestClient(app) as c:
        yield c


def _submit(client, h, label, tx_type, payload):
    return client.post("/v1/tx/submit", json=h.envelope(label, tx_type, payload))


def test_submit_and_read_back_a_campaign(client, funded) -> None:
    h = funded
    r = _submit(client, h, "owner", "CAMPAIGN_CREATE", {"metadata_ref": "QmMeta", "goal": 1_000, "duration": 10})
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["campaign_id"] == 1

    r = _submit(client, h, "alice", "CAMPAIGN_DONATE", {"campaign_id": 1, "amount": 400, "token": h.token})
    assert r.status_code == 200
    assert r.json()["events"][0]["new_total"] == 400

    c = client.get("/v1/campaigns/1").json()["campaign"]
    assert c["raised"] == 400
    assert c["owner"] == h.account("owner")

    st = client.get("/v1/campaigns/1/status").json()
    assert st["status"] == "funding"
    assert st["blocks_left"] == 10
    assert st["progress_bps"] == 4_000

    alice = h.account("alice")
    d = client.get(f"/v1/campaigns/1/donations/{alice}").json()
    assert d["donation"] == {"amount": 400, "refunded": False}
    assert client.get("/v1/campaigns/1/backers").json()["backers"] == 1
    assert client.get("/v1/campaigns/1/can-claim").json()["can_claim"] is False
    assert client.get(f"/v1/campaigns/1/can-refund/{alice}").json()["can_refund"] is False

    events = client.get("/v1/campaigns/1/events").json()
    assert [e["event"] for e in events["items"]] == ["campaign-created", "donation-received"]

    tx = client.get(f"/v1/tx/{body['tx_id']}").json()
    assert tx["receipt"]["tx_type"] == "CAMPAIGN_CREATE"

    n = client.get(f"/v1/accounts/{alice}/nonce").json()
    assert (n["nonce"], n["next_nonce"]) == (1, 2)


def test_ledger_rejection_is_409_with_numeric_code(client, funded) -> None:
    h = funded
    _submit(client, h, "owner", "CAMPAIGN_CREATE", {"metadata_ref": "QmMeta", "goal": 1_000, "duration": 10})

    r = _submit(client, h, "alice", "CAMPAIGN_CLAIM", {"campaign_id": 1, "token": h.token})
    assert r.status_code == 409
    err = r.json()["error"]
    assert err["code"] == "NotOwner"
    assert err["details"]["numeric"] == 100
    assert err["details"]["tx_id"]

    # Failed receipt is still queryable.
    receipt = client.get(f"/v1/tx/{err['details']['tx_id']}").json()["receipt"]
    assert receipt["ok"] is False


def test_admission_rejection_is_400(client, funded) -> None:
    env = funded.envelope("owner", "CAMPAIGN_CREATE", {"metadata_ref": "m", "goal": 1, "duration": 1}, nonce=9)
    r = client.post("/v1/tx/submit", json=env)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "bad_nonce"

    r = client.post("/v1/tx/submit", json=[1, 2])
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "bad_shape"


def test_unknown_ids_are_404(client) -> None:
    assert client.get("/v1/campaigns/7").status_code == 404
    assert client.get("/v1/campaigns/abc").status_code == 404
    assert client.get("/v1/campaigns/0/status").status_code == 404
    assert client.get("/v1/campaigns/7/events").status_code == 404
    assert client.get("/v1/tx/" + "0" * 64).status_code == 404


def test_list_and_stats(client, funded) -> None:
    h = funded
    for goal in (100, 200, 300):
        _submit(client, h, "owner", "CAMPAIGN_CREATE", {"metadata_ref": "QmMeta", "goal": goal, "duration": 10})
    _submit(client, h, "alice", "CAMPAIGN_DONATE", {"campaign_id": 2, "amount": 200, "token": h.token})

    page = client.get("/v1/campaigns", params={"limit": 2}).json()
    assert [c["campaign_id"] for c in page["items"]] == [1, 2]
    assert page["next_start_id"] == 3

    page = client.get("/v1/campaigns", params={"start_id": 3}).json()
    assert [c["campaign_id"] for c in page["items"]] == [3]
    assert page["next_start_id"] is None

    met = client.get("/v1/campaigns", params={"status": "goal_met"}).json()
    assert [c["campaign_id"] for c in met["items"]] == [2]
    assert client.get("/v1/campaigns", params={"status": "weird"}).status_code == 400

    stats = client.get("/v1/campaigns/stats").json()["stats"]
    assert stats["total_campaigns"] == 3
    assert stats["total_raised"] == 200
    assert stats["funded_campaigns"] == 1


def test_fee_routes(client, funded) -> None:
    h = funded
    _submit(client, h, "owner", "CAMPAIGN_CREATE", {"metadata_ref": "QmMeta", "goal": 1_000_000, "duration": 10})
    _submit(client, h, "alice", "CAMPAIGN_DONATE", {"campaign_id": 1, "amount": 1_000_000, "token": h.token})
    r = _submit(client, h, "owner", "CAMPAIGN_CLAIM", {"campaign_id": 1, "token": h.token})
    assert r.json()["result"] == {"applied": "CAMPAIGN_CLAIM", "campaign_id": 1, "payout": 950_000, "fee": 50_000}

    fees = client.get("/v1/fees").json()
    assert fees["fee_rate_bps"] == 500
    assert fees["fee_pool"] == 50_000
    assert fees["fee_pools"] == {h.token: 50_000}

    calc = client.get("/v1/fees/calculate", params={"amount": 1_000_000}).json()
    assert (calc["fee"], calc["payout"]) == (50_000, 950_000)
    assert client.get("/v1/fees/calculate", params={"amount": -1}).status_code == 400
    assert client.get("/v1/fees/calculate").status_code == 400

    r = _submit(client, h, "admin", "FEES_WITHDRAW", {"token": h.token})
    assert r.status_code == 200
    assert client.get("/v1/fees").json()["fees_withdrawn_total"] == 50_000


def test_status_route(client) -> None:
    j = client.get("/v1/status").json()
    assert j["ok"] is True
    assert j["chain_id"] == "fundledger-test"
    assert j["campaign_count"] == 0
    assert j["fee_rate_bps"] == 500
    assert j["invariants_error"] is None


def test_metrics_route(client, funded, monkeypatch) -> None:
    monkeypatch.delenv("FUNDLEDGER_METRICS_ENABLED", raising=False)
    assert client.get("/v1/metrics").status_code == 404

    reset_metrics()
    monkeypatch.setenv("FUNDLEDGER_METRICS_ENABLED", "1")
    _submit(client, funded, "owner", "CAMPAIGN_CREATE", {"metadata_ref": "QmMeta", "goal": 5, "duration": 10})
    text = client.get("/v1/metrics").text
    assert "fundledger_tx_applied_total 1" in text
    assert "# TYPE fundledger_campaign_count gauge" in text
