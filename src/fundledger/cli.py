from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any, Dict, Optional

from fundledger.crypto.sig import generate_ed25519_keypair, sign_tx_envelope_dict
from fundledger.env import load_dotenv_if_present
from fundledger.runtime.sqlite_db import SqliteDB, SqliteLedgerStore
from fundledger.runtime.state_invariants import check_ledger_invariants

Json = Dict[str, Any]


def _print_json(obj: Any) -> None:
    sys.stdout.write(json.dumps(obj, sort_keys=True, indent=2) + "\n")


def _read_json_arg(path: str) -> Json:
    if path == "-":
        raw = sys.stdin.read()
    else:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    obj = json.loads(raw)
    if not isinstance(obj, dict):
        raise ValueError("envelope must be a JSON object")
    return obj


def _read_privkey(args: argparse.Namespace) -> str:
    if args.privkey:
        return str(args.privkey).strip()
    if args.privkey_file:
        with open(args.privkey_file, "r", encoding="utf-8") as f:
            return f.read().strip()
    return ""


def cmd_keygen(args: argparse.Namespace) -> int:
    pub, seed = generate_ed25519_keypair()
    _print_json({"pubkey": pub, "privkey": seed})
    return 0


def cmd_sign(args: argparse.Namespace) -> int:
    privkey = _read_privkey(args)
    if not privkey:
        sys.stderr.write("missing --privkey or --privkey-file\n")
        return 2
    chain_id = str(args.chain_id or "").strip()
    if not chain_id:
        sys.stderr.write("missing --chain-id (or FUNDLEDGER_CHAIN_ID)\n")
        return 2

    tx = _read_json_arg(args.envelope)
    _print_json(sign_tx_envelope_dict(tx=tx, privkey=privkey, chain_id=chain_id))
    return 0


def cmd_check_state(args: argparse.Namespace) -> int:
    db_path = str(args.db or "").strip()
    if not db_path or not os.path.exists(db_path):
        sys.stderr.write(f"db not found: {db_path!r}\n")
        return 2

    store = SqliteLedgerStore(db=SqliteDB(path=db_path))
    if not store.exists():
        sys.stderr.write("db has no ledger snapshot\n")
        return 2

    st = store.read()
    violations = check_ledger_invariants(st)
    _print_json(
        {
            "ok": not violations,
            "chain_id": st.get("chain_id"),
            "height": st.get("height"),
            "campaigns": len(st.get("campaigns") or {}),
            "receipts": store.count_receipts(),
            "violations": violations,
        }
    )
    return 0 if not violations else 1


def cmd_serve(args: argparse.Namespace) -> int:
    # Import late so the dotenv load above wins over module-level env reads.
    from fundledger.api.__main__ import main as serve_main

    serve_main(host=args.host or None, port=args.port or None)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="fundledger", description="FundLedger campaign escrow ledger tools")
    sub = p.add_subparsers(dest="cmd", required=True)

    kg = sub.add_parser("keygen", help="generate an ed25519 keypair (signer = pubkey hex)")
    kg.set_defaults(func=cmd_keygen)

    sg = sub.add_parser("sign", help="sign a tx envelope JSON and print it")
    sg.add_argument("envelope", help="path to envelope JSON, or - for stdin")
    sg.add_argument("--privkey", default=os.environ.get("FUNDLEDGER_PRIVKEY", ""))
    sg.add_argument("--privkey-file", default=os.environ.get("FUNDLEDGER_PRIVKEY_FILE", ""))
    sg.add_argument("--chain-id", default=os.environ.get("FUNDLEDGER_CHAIN_ID", ""))
    sg.set_defaults(func=cmd_sign)

    cs = sub.add_parser("check-state", help="run ledger invariants against a SQLite db")
    cs.add_argument("--db", default=os.environ.get("FUNDLEDGER_DB_PATH", "./data/fundledger.db"))
    cs.set_defaults(func=cmd_check_state)

    sv = sub.add_parser("serve", help="run the HTTP API")
    sv.add_argument("--host", default="")
    sv.add_argument("--port", type=int, default=0)
    sv.set_defaults(func=cmd_serve)

    return p


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv_if_present()
    args = build_parser().parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
