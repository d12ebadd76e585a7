from __future__ import annotations

import json
import os
import random
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

Json = Dict[str, Any]

SCHEMA_VERSION = 1

_DDL = (
    """
    CREATE TABLE IF NOT EXISTS meta (
      key TEXT PRIMARY KEY,
      value TEXT NOT NULL
    );
    """,
    # Single-row snapshot of the whole ledger state.
    """
    CREATE TABLE IF NOT EXISTS ledger_state (
      id INTEGER PRIMARY KEY CHECK (id = 1),
      height INTEGER NOT NULL,
      state_json TEXT NOT NULL,
      updated_ts_ms INTEGER NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS tx_receipts (
      seq INTEGER PRIMARY KEY AUTOINCREMENT,
      tx_id TEXT NOT NULL UNIQUE,
      height INTEGER NOT NULL,
      tx_type TEXT NOT NULL,
      signer TEXT NOT NULL,
      campaign_id INTEGER,
      ok INTEGER NOT NULL,
      code TEXT NOT NULL,
      result_json TEXT NOT NULL,
      events_json TEXT NOT NULL,
      applied_ts_ms INTEGER NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_receipts_campaign ON tx_receipts(campaign_id, seq);",
    "CREATE INDEX IF NOT EXISTS idx_receipts_signer ON tx_receipts(signer, seq);",
    """
    CREATE TABLE IF NOT EXISTS token_balances (
      token TEXT NOT NULL,
      account TEXT NOT NULL,
      balance INTEGER NOT NULL CHECK (balance >= 0),
      updated_ts_ms INTEGER NOT NULL,
      PRIMARY KEY (token, account)
    );
    """,
)

_SYNC_LEVELS = ("OFF", "NORMAL", "FULL", "EXTRA")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: Any) -> str:
    # No default=str: a non-JSON value in ledger state is a bug and must raise.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_ms(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def synchronous_level() -> str:
    """PRAGMA synchronous for the current mode: FULL in prod, NORMAL elsewhere.

    FUNDLEDGER_SQLITE_SYNCHRONOUS overrides it when set to a valid level.
    """
    mode = (os.environ.get("FUNDLEDGER_MODE") or "prod").strip().lower()
    default = "FULL" if mode == "prod" else "NORMAL"
    chosen = (os.environ.get("FUNDLEDGER_SQLITE_SYNCHRONOUS") or "").strip().upper()
    return chosen if chosen in _SYNC_LEVELS else default


def _is_lock_contention(e: sqlite3.OperationalError) -> bool:
    msg = str(e).lower()
    return "locked" in msg or "busy" in msg


class SqliteDB:
    """One SQLite file holding the ledger snapshot, receipts and token balances.

    Connections are opened per operation and never shared across threads.
    Writers go through ``write_tx``, which retries BEGIN/COMMIT while another
    writer holds the lock, up to FUNDLEDGER_SQLITE_WRITE_DEADLINE_MS.
    """

    SCHEMA_VERSION = SCHEMA_VERSION

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()
        timeout_ms = _env_ms("FUNDLEDGER_SQLITE_CONNECT_TIMEOUT_MS", 30_000)
        # isolation_level=None: transactions are opened explicitly in write_tx.
        con = sqlite3.connect(self.path, timeout=timeout_ms / 1000.0, isolation_level=None, check_same_thread=False)
        con.row_factory = sqlite3.Row

        journal = str(con.execute("PRAGMA journal_mode=WAL;").fetchone()[0]).lower()
        if journal != "wal" and os.environ.get("FUNDLEDGER_SQLITE_ALLOW_NON_WAL", "").strip().lower() not in {"1", "true"}:
            con.close()
            raise RuntimeError(f"sqlite journal_mode is '{journal}', expected 'wal'")

        pragmas = (
            ("synchronous", synchronous_level()),
            ("foreign_keys", "ON"),
            ("temp_store", "MEMORY"),
            ("wal_autocheckpoint", max(1, _env_ms("FUNDLEDGER_SQLITE_WAL_AUTOCHECKPOINT", 1000))),
            ("busy_timeout", max(0, _env_ms("FUNDLEDGER_SQLITE_BUSY_TIMEOUT_MS", timeout_ms))),
        )
        for name, value in pragmas:
            con.execute(f"PRAGMA {name}={value};")
        return con

    def init_schema(self) -> None:
        """Create missing tables and refuse a database from another schema version."""
        with self.write_tx() as con:
            for ddl in _DDL:
                con.execute(ddl)
            row = con.execute("SELECT value FROM meta WHERE key='schema_version';").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(SCHEMA_VERSION),))
                return
            have = str(row["value"])
            if have != str(SCHEMA_VERSION):
                raise RuntimeError(f"sqlite schema_version mismatch: have={have} want={SCHEMA_VERSION}")

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _execute_with_backoff(con: sqlite3.Connection, stmt: str, deadline_ms: int) -> None:
        base_s = max(1, _env_ms("FUNDLEDGER_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0
        cap_s = max(base_s, _env_ms("FUNDLEDGER_SQLITE_WRITE_BACKOFF_MAX_MS", 250) / 1000.0)
        attempt = 0
        while True:
            try:
                con.execute(stmt)
                return
            except sqlite3.OperationalError as e:
                if not _is_lock_contention(e) or _now_ms() >= deadline_ms:
                    raise
            delay = min(cap_s, base_s * 2 ** min(attempt, 8))
            time.sleep(delay * random.uniform(0.5, 1.5))
            attempt += 1

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        deadline_ms = _now_ms() + max(250, _env_ms("FUNDLEDGER_SQLITE_WRITE_DEADLINE_MS", 30_000))
        with self.connection() as con:
            self._execute_with_backoff(con, "BEGIN IMMEDIATE;", deadline_ms)
            try:
                yield con
                self._execute_with_backoff(con, "COMMIT;", deadline_ms)
            except BaseException:
                if con.in_transaction:
                    con.execute("ROLLBACK;")
                raise


class SqliteLedgerStore:
    """Ledger snapshot + tx receipts persisted in SQLite.

    This provides:
      - read(): load latest ledger snapshot
      - write(st): overwrite the snapshot atomically
      - commit(st, receipt, within=...): snapshot, receipt and any caller
        writes (token settlement) in one write transaction
      - receipt / event lookups

    The authoritative snapshot is a single row.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    @property
    def db(self) -> SqliteDB:
        return self._db

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM ledger_state WHERE id=1;").fetchone() is not None

    def read(self) -> Json:
        with self._db.connection() as con:
            row = con.execute("SELECT state_json FROM ledger_state WHERE id=1;").fetchone()
            if row is None:
                raise FileNotFoundError("sqlite ledger_state is missing")
            st = json.loads(str(row["state_json"]))
            if not isinstance(st, dict):
                raise ValueError("ledger_state is not a JSON object")
            return st

    @staticmethod
    def _write_snapshot(con: sqlite3.Connection, st: Json) -> None:
        con.execute(
            """
            INSERT INTO ledger_state(id, height, state_json, updated_ts_ms)
            VALUES(1, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              height=excluded.height,
              state_json=excluded.state_json,
              updated_ts_ms=excluded.updated_ts_ms;
            """,
            (int(st.get("height", 0)), _canon_json(st), _now_ms()),
        )

    def write(self, st: Json) -> None:
        if not isinstance(st, dict):
            raise ValueError("ledger write expects dict")
        with self._db.write_tx() as con:
            self._write_snapshot(con, st)

    def commit(
        self,
        st: Json,
        receipt: Json,
        *,
        within: Optional[Callable[[sqlite3.Connection], None]] = None,
    ) -> None:
        """Write snapshot and receipt in one transaction.

        `within` runs on the same connection before COMMIT; if it raises,
        nothing is written.
        """
        if not isinstance(st, dict):
            raise ValueError("ledger commit expects dict")
        cid = receipt.get("campaign_id")
        with self._db.write_tx() as con:
            if within is not None:
                within(con)
            self._write_snapshot(con, st)
            con.execute(
                """
                INSERT INTO tx_receipts(
                  tx_id, height, tx_type, signer, campaign_id, ok, code, result_json, events_json, applied_ts_ms
                ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    str(receipt["tx_id"]),
                    int(receipt.get("height", 0)),
                    str(receipt.get("tx_type", "")),
                    str(receipt.get("signer", "")),
                    int(cid) if cid is not None else None,
                    1 if receipt.get("ok") else 0,
                    str(receipt.get("code", "")),
                    _canon_json(receipt.get("result") or {}),
                    _canon_json(receipt.get("events") or []),
                    _now_ms(),
                ),
            )

    @staticmethod
    def _receipt_from_row(row: sqlite3.Row) -> Json:
        return {
            "seq": int(row["seq"]),
            "tx_id": str(row["tx_id"]),
            "height": int(row["height"]),
            "tx_type": str(row["tx_type"]),
            "signer": str(row["signer"]),
            "campaign_id": (int(row["campaign_id"]) if row["campaign_id"] is not None else None),
            "ok": bool(row["ok"]),
            "code": str(row["code"]),
            "result": json.loads(str(row["result_json"])),
            "events": json.loads(str(row["events_json"])),
            "applied_ts_ms": int(row["applied_ts_ms"]),
        }

    def get_receipt(self, tx_id: str) -> Optional[Json]:
        with self._db.connection() as con:
            row = con.execute("SELECT * FROM tx_receipts WHERE tx_id=? LIMIT 1;", (str(tx_id),)).fetchone()
            return self._receipt_from_row(row) if row is not None else None

    def list_campaign_events(self, campaign_id: int, *, limit: int = 500) -> List[Json]:
        out: List[Json] = []
        with self._db.connection() as con:
            rows = con.execute(
                "SELECT events_json FROM tx_receipts WHERE campaign_id=? AND ok=1 ORDER BY seq ASC LIMIT ?;",
                (int(campaign_id), max(1, int(limit))),
            ).fetchall()
        for row in rows:
            events = json.loads(str(row["events_json"]))
            if isinstance(events, list):
                out.extend(e for e in events if isinstance(e, dict))
        return out

    def count_receipts(self) -> int:
        with self._db.connection() as con:
            row = con.execute("SELECT COUNT(*) AS n FROM tx_receipts;").fetchone()
            return int(row["n"]) if row is not None else 0
