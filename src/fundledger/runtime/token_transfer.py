# src/fundledger/runtime/token_transfer.py
from __future__ import annotations

"""Token transfer service seam.

The ledger never holds balances itself. Appliers stage `Transfer` records on
the ApplyContext after the service has checked them (`check`), and the
executor moves value with one `settle` call once the tx has applied. A
service that shares the ledger DB settles inside the same SQLite write
transaction as the ledger commit; any other service settles first and is
compensated with `reverse_transfers` if the commit fails.

A service signals failure by raising TransferError; apply code turns that
into the TransferFailed ledger error before any bookkeeping is written.
"""

import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Set, Tuple

from fundledger.runtime.sqlite_db import SqliteDB


@dataclass
class TransferError(Exception):
    reason: str
    details: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:  # pragma: no cover
        return f"transfer_failed:{self.reason}"


@dataclass(frozen=True)
class Transfer:
    token: str
    amount: int
    sender: str
    recipient: str


def reverse_transfers(transfers: Sequence[Transfer]) -> List[Transfer]:
    """Transfers that undo `transfers`, newest first."""
    return [Transfer(t.token, t.amount, t.recipient, t.sender) for t in reversed(list(transfers))]


class TokenTransferService(Protocol):
    def check(self, transfer: Transfer, pending: Sequence[Transfer] = ()) -> None:
        """Raise TransferError unless `transfer` would succeed after `pending` settles."""
        ...

    def settle(self, transfers: Sequence[Transfer], *, con: Optional[sqlite3.Connection] = None) -> None:
        """Move value for every transfer, or for none of them."""
        ...

    def shares_db(self, db: SqliteDB) -> bool:
        ...

    def balance_of(self, token: str, account: str) -> int:
        ...


def _check_args(t: Transfer) -> None:
    if not str(t.token or "").strip():
        raise TransferError("missing_token")
    if isinstance(t.amount, bool) or not isinstance(t.amount, int) or t.amount <= 0:
        raise TransferError("bad_amount", {"amount": t.amount})
    if not str(t.sender or "").strip() or not str(t.recipient or "").strip():
        raise TransferError("missing_party", {"sender": t.sender, "recipient": t.recipient})


def _net(token: str, account: str, pending: Iterable[Transfer]) -> int:
    n = 0
    for p in pending:
        if p.token != token:
            continue
        if p.recipient == account:
            n += p.amount
        if p.sender == account:
            n -= p.amount
    return n


def _insufficient(t: Transfer, have: int) -> TransferError:
    return TransferError("insufficient_balance", {"account": t.sender, "have": have, "need": t.amount})


class InMemoryTokenTransfer:
    """Process-local balances. Used by tests and throwaway dev nodes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._balances: Dict[Tuple[str, str], int] = {}
        self.paused_tokens: Set[str] = set()
        self.transfers: List[Tuple[str, int, str, str]] = []

    def mint(self, token: str, account: str, amount: int) -> None:
        if int(amount) <= 0:
            raise ValueError("mint amount must be > 0")
        with self._lock:
            key = (str(token), str(account))
            self._balances[key] = int(self._balances.get(key, 0)) + int(amount)

    def balance_of(self, token: str, account: str) -> int:
        with self._lock:
            return int(self._balances.get((str(token), str(account)), 0))

    def shares_db(self, db: SqliteDB) -> bool:
        return False

    def _check_locked(self, t: Transfer, pending: Sequence[Transfer]) -> None:
        _check_args(t)
        if t.token in self.paused_tokens:
            raise TransferError("token_paused", {"token": t.token})
        have = int(self._balances.get((t.token, t.sender), 0)) + _net(t.token, t.sender, pending)
        if have < t.amount:
            raise _insufficient(t, have)

    def check(self, transfer: Transfer, pending: Sequence[Transfer] = ()) -> None:
        with self._lock:
            self._check_locked(transfer, pending)

    def settle(self, transfers: Sequence[Transfer], *, con: Optional[sqlite3.Connection] = None) -> None:
        batch = list(transfers)
        with self._lock:
            for i, t in enumerate(batch):
                self._check_locked(t, batch[:i])
            for t in batch:
                src, dst = (t.token, t.sender), (t.token, t.recipient)
                self._balances[src] = int(self._balances.get(src, 0)) - t.amount
                self._balances[dst] = int(self._balances.get(dst, 0)) + t.amount
                self.transfers.append((t.token, t.amount, t.sender, t.recipient))

    def transfer(self, token: str, amount: int, sender: str, recipient: str) -> None:
        self.settle([Transfer(token, amount, sender, recipient)])


_UPSERT_CREDIT = """
    INSERT INTO token_balances(token, account, balance, updated_ts_ms)
    VALUES(?, ?, ?, ?)
    ON CONFLICT(token, account) DO UPDATE SET
      balance=token_balances.balance + excluded.balance,
      updated_ts_ms=excluded.updated_ts_ms;
"""


def _read_balance(con: sqlite3.Connection, token: str, account: str) -> int:
    row = con.execute(
        "SELECT balance FROM token_balances WHERE token=? AND account=? LIMIT 1;",
        (str(token), str(account)),
    ).fetchone()
    return int(row["balance"]) if row is not None else 0


class SqliteTokenTransfer:
    """Durable balances in the node DB (table token_balances).

    A settle either runs in its own write transaction, or inside the caller's
    when `con` is given. Either way a failed batch moves nothing.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    def mint(self, token: str, account: str, amount: int) -> None:
        if int(amount) <= 0:
            raise ValueError("mint amount must be > 0")
        with self._db.write_tx() as con:
            con.execute(_UPSERT_CREDIT, (str(token), str(account), int(amount), int(time.time() * 1000)))

    def balance_of(self, token: str, account: str) -> int:
        with self._db.connection() as con:
            return _read_balance(con, token, account)

    def shares_db(self, db: SqliteDB) -> bool:
        return Path(db.path).resolve() == Path(self._db.path).resolve()

    def check(self, transfer: Transfer, pending: Sequence[Transfer] = ()) -> None:
        _check_args(transfer)
        with self._db.connection() as con:
            have = _read_balance(con, transfer.token, transfer.sender)
        have += _net(transfer.token, transfer.sender, pending)
        if have < transfer.amount:
            raise _insufficient(transfer, have)

    def _settle_on(self, con: sqlite3.Connection, transfers: Sequence[Transfer]) -> None:
        now = int(time.time() * 1000)
        for t in transfers:
            _check_args(t)
            have = _read_balance(con, t.token, t.sender)
            if have < t.amount:
                raise _insufficient(t, have)
            con.execute(
                "UPDATE token_balances SET balance=?, updated_ts_ms=? WHERE token=? AND account=?;",
                (have - t.amount, now, t.token, t.sender),
            )
            con.execute(_UPSERT_CREDIT, (t.token, t.recipient, t.amount, now))

    def settle(self, transfers: Sequence[Transfer], *, con: Optional[sqlite3.Connection] = None) -> None:
        if con is not None:
            self._settle_on(con, transfers)
            return
        with self._db.write_tx() as own:
            self._settle_on(own, transfers)

    def transfer(self, token: str, amount: int, sender: str, recipient: str) -> None:
        self.settle([Transfer(token, amount, sender, recipient)])


__all__ = [
    "TransferError",
    "Transfer",
    "TokenTransferService",
    "InMemoryTokenTransfer",
    "SqliteTokenTransfer",
    "reverse_transfers",
]
