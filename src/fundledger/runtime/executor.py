from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from fundledger.runtime import queries
from fundledger.runtime.apply_context import ApplyContext
from fundledger.runtime.block_clock import BlockClock, IntervalBlockClock, ManualBlockClock
from fundledger.runtime.chain_config import LedgerConfig, load_ledger_config, validate_ledger_config
from fundledger.runtime.domain_apply import ApplyError, apply_tx_atomic
from fundledger.runtime.errors import error_numeric
from fundledger.runtime.ledger_logging import log_event
from fundledger.runtime.metrics import inc_counter, set_gauge
from fundledger.runtime.sqlite_db import SqliteDB, SqliteLedgerStore
from fundledger.runtime.state_invariants import check_custody_coverage, check_ledger_invariants, ensure_state
from fundledger.runtime.token_transfer import SqliteTokenTransfer, TokenTransferService, Transfer, reverse_transfers
from fundledger.runtime.tx_admission import admit_tx
from fundledger.runtime.tx_admission_types import TxEnvelope
from fundledger.runtime.tx_id import compute_tx_id_from_envelope

Json = Dict[str, Any]

log = logging.getLogger("fundledger.executor")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _ensure_parent(path: str) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)


@dataclass
class ExecutorMeta:
    ok: bool
    error: str = ""
    height: int = 0
    campaign_count: int = 0
    receipts: int = 0


class ExecutorError(RuntimeError):
    pass


# Genesis params that may never change for an existing ledger.
_FROZEN_PARAMS = ("fee_rate_bps", "admin", "custody_account", "accepted_token")


class LedgerExecutor:
    """Single serializing executor for the campaign ledger.

    Every submit and every query runs under one re-entrant lock, so
    operations never interleave. State lives in memory and is persisted
    (snapshot + receipt) in one SQLite write transaction after each applied
    tx. Token movements staged by the tx settle in that same transaction when
    the token service shares the ledger DB; otherwise they settle just before
    it and are reversed if the commit fails.
    """

    def __init__(
        self,
        *,
        cfg: LedgerConfig,
        transfers: Optional[TokenTransferService] = None,
        clock: Optional[BlockClock] = None,
    ) -> None:
        validate_ledger_config(cfg)
        self.cfg = cfg
        self.chain_id = str(cfg.chain_id)
        self.node_id = str(cfg.node_id)
        self.db_path = str(cfg.db_path)
        _ensure_parent(self.db_path)

        self._lock = threading.RLock()
        self._db = SqliteDB(path=self.db_path)
        self._db.init_schema()
        self._store = SqliteLedgerStore(db=self._db)

        # Load or initialize state.
        if self._store.exists():
            self.state = self._store.read()
        else:
            self.state = self._initial_state()
            self._store.write(self.state)

        ensure_state(self.state)
        self._check_genesis_fail_closed()

        self.transfers: TokenTransferService = transfers if transfers is not None else SqliteTokenTransfer(db=self._db)

        violations = self._violations()
        if violations:
            raise ExecutorError(
                "ledger_invariant_violation: " + "; ".join(violations[:5]) + ". Refuse to start."
            )

        self.clock: BlockClock = clock if clock is not None else self._build_clock()

        set_gauge("campaign_count", queries.get_campaign_count(self.state))
        set_gauge("fee_pool", queries.get_total_fees(self.state))
        log_event(
            log,
            "executor_started",
            chain_id=self.chain_id,
            node_id=self.node_id,
            fee_rate_bps=int(self.state["params"]["fee_rate_bps"]),
            campaigns=queries.get_campaign_count(self.state),
        )

    def _initial_state(self) -> Json:
        cfg = self.cfg
        return {
            "chain_id": self.chain_id,
            "height": 0,
            "created_ms": _now_ms(),
            "params": {
                "fee_rate_bps": int(cfg.fee_rate_bps or 0),
                "admin": cfg.admin_account,
                "custody_account": cfg.custody_account,
                "accepted_token": cfg.accepted_token,
                "metadata_ref_max_len": int(cfg.metadata_ref_max_len),
                "strict_metadata_cid": bool(cfg.strict_metadata_cid),
                "genesis_ms": int(cfg.genesis_ms) or _now_ms(),
            },
            "accounts": {},
            "campaigns": {},
            "campaign_seq": 0,
            "donations": {},
            "backers": {},
            "refund_stats": {},
            "fee_pools": {},
            "fee_pool": 0,
            "fees_accrued_total": 0,
            "fees_withdrawn_total": 0,
        }

    def _check_genesis_fail_closed(self) -> None:
        """Refuse to run a ledger under different genesis parameters than it was created with."""
        st_chain_id = str(self.state.get("chain_id") or "").strip()
        if st_chain_id != self.chain_id:
            raise ExecutorError(f"chain_id mismatch: db={st_chain_id!r} executor={self.chain_id!r}. Refuse to start.")

        params = self.state.get("params") or {}
        want = {
            "fee_rate_bps": self.cfg.fee_rate_bps,
            "admin": self.cfg.admin_account,
            "custody_account": self.cfg.custody_account,
            "accepted_token": self.cfg.accepted_token,
        }
        for name in _FROZEN_PARAMS:
            if params.get(name) != want[name]:
                raise ExecutorError(
                    f"genesis param mismatch for {name}: db={params.get(name)!r} config={want[name]!r}. Refuse to start."
                )

    def _violations(self) -> List[str]:
        return check_ledger_invariants(self.state) + check_custody_coverage(self.state, self.transfers.balance_of)

    def _commit(self, receipt: Json, staged: List[Transfer]) -> None:
        """Persist state and receipt, settling staged transfers with them."""
        if not staged:
            self._store.commit(self.state, receipt)
            return
        if self.transfers.shares_db(self._db):
            self._store.commit(self.state, receipt, within=lambda con: self.transfers.settle(staged, con=con))
            return

        self.transfers.settle(staged)
        try:
            self._store.commit(self.state, receipt)
        except Exception as e:
            try:
                self.transfers.settle(reverse_transfers(staged))
            except Exception as undo:
                log.exception("transfer reversal failed tx_id=%s", receipt.get("tx_id"))
                raise ExecutorError(f"ledger_commit_failed_transfers_not_reversed: {undo}") from e
            inc_counter("tx_transfers_reversed_total")
            raise

    def _build_clock(self) -> BlockClock:
        if self.cfg.clock == "manual":
            return ManualBlockClock(start=int(self.state.get("height") or 0))
        genesis_ms = int((self.state.get("params") or {}).get("genesis_ms") or self.cfg.genesis_ms or _now_ms())
        return IntervalBlockClock(genesis_ms=genesis_ms, block_interval_ms=int(self.cfg.block_interval_ms))

    # ----------------------------
    # Public accessors
    # ----------------------------

    @property
    def store(self) -> SqliteLedgerStore:
        return self._store

    def height(self) -> int:
        return int(self.clock.height())

    def read_state(self) -> Json:
        with self._lock:
            return copy.deepcopy(self.state)

    def next_nonce(self, signer: str) -> int:
        with self._lock:
            acct = (self.state.get("accounts") or {}).get(str(signer)) or {}
            return int(acct.get("nonce", 0)) + 1

    # ----------------------------
    # Tx submission
    # ----------------------------

    def submit_tx(self, env: Json) -> Json:
        """Admit, apply and persist one tx envelope.

        Returns a receipt dict. Admission rejections are returned with
        stage="admission" and leave no trace; apply rejections are
        persisted as failed receipts (the signer's nonce is consumed).
        """
        with self._lock:
            verdict = admit_tx(
                env,
                self.state,
                chain_id=self.chain_id,
                require_sig=not bool(self.cfg.allow_unsigned_txs),
                accepted_token=self.cfg.accepted_token,
            )
            if not verdict.ok:
                inc_counter("tx_admission_rejected_total")
                log_event(
                    log,
                    "tx_rejected",
                    stage="admission",
                    code=verdict.code,
                    reason=verdict.reason,
                    tx_type=str(env.get("tx_type") if isinstance(env, dict) else ""),
                )
                return {
                    "ok": False,
                    "stage": "admission",
                    "error": verdict.as_error(),
                }

            txe = TxEnvelope.from_json(env)
            tx_type = txe.tx_type.strip().upper()
            tx_id = compute_tx_id_from_envelope(self.chain_id, txe)
            height = self.height()
            ctx = ApplyContext(height=height, transfers=self.transfers, custody_account=self.cfg.custody_account)

            prior = copy.deepcopy(self.state)
            receipt: Json = {
                "tx_id": tx_id,
                "height": height,
                "tx_type": tx_type,
                "signer": txe.signer,
                "campaign_id": txe.payload.get("campaign_id") if isinstance(txe.payload.get("campaign_id"), int) else None,
            }
            try:
                meta = apply_tx_atomic(self.state, txe, ctx)
            except ApplyError as e:
                receipt.update(
                    {
                        "ok": False,
                        "stage": "apply",
                        "code": e.code,
                        "result": {},
                        "events": [],
                        "error": {
                            "code": e.code,
                            "numeric": error_numeric(e.code),
                            "reason": e.reason,
                            "details": e.details if e.details is not None else {},
                        },
                    }
                )
            else:
                events = meta.pop("events", [])
                if isinstance(meta.get("campaign_id"), int):
                    receipt["campaign_id"] = meta["campaign_id"]
                receipt.update({"ok": True, "stage": "apply", "code": "ok", "result": meta, "events": events})

            self.state["height"] = max(int(self.state.get("height") or 0), height)
            staged = list(ctx.staged) if receipt["ok"] else []
            try:
                self._commit(receipt, staged)
            except ExecutorError:
                self.state = prior
                raise
            except Exception as e:
                # Memory must never run ahead of disk.
                self.state = prior
                log.exception("ledger commit failed tx_id=%s", tx_id)
                raise ExecutorError(f"ledger_commit_failed: {e}") from e

            if receipt["ok"]:
                inc_counter("tx_applied_total")
                inc_counter(f"tx_applied_{tx_type.lower()}_total")
            else:
                inc_counter("tx_apply_rejected_total")
            set_gauge("campaign_count", queries.get_campaign_count(self.state))
            set_gauge("fee_pool", queries.get_total_fees(self.state))

            log_event(
                log,
                "tx_applied" if receipt["ok"] else "tx_rejected",
                stage="apply",
                tx_id=tx_id,
                tx_type=tx_type,
                signer=txe.signer,
                height=height,
                code=receipt["code"],
            )
            return receipt

    # ----------------------------
    # Queries
    # ----------------------------

    def get_campaign(self, campaign_id: int) -> Optional[Json]:
        with self._lock:
            return queries.get_campaign(self.state, campaign_id)

    def get_donation(self, campaign_id: int, donor: str) -> Json:
        with self._lock:
            return queries.get_donation(self.state, campaign_id, donor)

    def get_backer_count(self, campaign_id: int) -> int:
        with self._lock:
            return queries.get_backer_count(self.state, campaign_id)

    def get_refund_stats(self, campaign_id: int) -> Json:
        with self._lock:
            return queries.get_refund_stats(self.state, campaign_id)

    def get_campaign_count(self) -> int:
        with self._lock:
            return queries.get_campaign_count(self.state)

    def get_total_fees(self) -> int:
        with self._lock:
            return queries.get_total_fees(self.state)

    def get_fee_pools(self) -> Dict[str, int]:
        with self._lock:
            return queries.get_fee_pools(self.state)

    def fee_rate_bps(self) -> int:
        with self._lock:
            return queries.fee_rate_bps(self.state)

    def calculate_fee(self, amount: int) -> int:
        with self._lock:
            return queries.calculate_fee_at_rate(self.state, amount)

    def is_goal_met(self, campaign_id: int) -> bool:
        with self._lock:
            return queries.is_goal_met(self.state, campaign_id)

    def is_expired(self, campaign_id: int) -> bool:
        with self._lock:
            return queries.is_expired(self.state, campaign_id, self.height())

    def can_claim(self, campaign_id: int) -> bool:
        with self._lock:
            return queries.can_claim(self.state, campaign_id)

    def can_refund(self, campaign_id: int, caller: str) -> bool:
        with self._lock:
            return queries.can_refund(self.state, campaign_id, caller, self.height())

    def campaign_status(self, campaign_id: int) -> Optional[Json]:
        with self._lock:
            return queries.campaign_status(self.state, campaign_id, self.height())

    def list_campaigns(
        self,
        *,
        start_id: int = 1,
        limit: int = 20,
        owner: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Json]:
        with self._lock:
            return queries.list_campaigns(
                self.state, self.height(), start_id=start_id, limit=limit, owner=owner, status=status
            )

    def campaign_stats(self) -> Json:
        with self._lock:
            return queries.campaign_stats(self.state)

    def list_campaign_events(self, campaign_id: int, *, limit: int = 500) -> List[Json]:
        with self._lock:
            return self._store.list_campaign_events(campaign_id, limit=limit)

    def get_receipt(self, tx_id: str) -> Optional[Json]:
        with self._lock:
            return self._store.get_receipt(tx_id)

    def check_invariants(self) -> List[str]:
        with self._lock:
            return self._violations()

    def meta(self) -> ExecutorMeta:
        with self._lock:
            violations = self._violations()
            return ExecutorMeta(
                ok=not violations,
                error="; ".join(violations),
                height=self.height(),
                campaign_count=queries.get_campaign_count(self.state),
                receipts=self._store.count_receipts(),
            )

    # ----------------------------
    # Compatibility / orchestration hooks
    # ----------------------------

    @classmethod
    def from_env(cls) -> "LedgerExecutor":
        return cls(cfg=load_ledger_config())
