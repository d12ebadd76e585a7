from __future__ import annotations

import logging
import os
from typing import Optional, Tuple

import uvicorn

from fundledger.api.structured_logging import configure_structured_logging
from fundledger.env import load_dotenv_if_present
from fundledger.runtime.ledger_logging import log_event

log = logging.getLogger("fundledger.api")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080


def listen_address(host: Optional[str] = None, port: Optional[int] = None) -> Tuple[str, int]:
    """Explicit arguments win over FUNDLEDGER_API_HOST / FUNDLEDGER_API_PORT."""
    h = (host or os.environ.get("FUNDLEDGER_API_HOST") or DEFAULT_HOST).strip()
    raw = port if port else (os.environ.get("FUNDLEDGER_API_PORT") or "").strip() or DEFAULT_PORT
    try:
        p = int(raw)
    except ValueError:
        raise SystemExit(f"FUNDLEDGER_API_PORT must be an integer; got {raw!r}")
    if not 0 < p <= 65535:
        raise SystemExit(f"api port must be 1..65535; got {p}")
    return h, p


def main(*, host: Optional[str] = None, port: Optional[int] = None) -> None:
    load_dotenv_if_present()

    # create_app reads FUNDLEDGER_* at call time, so import it once .env is in.
    from fundledger.api.app import create_app

    configure_structured_logging()
    h, p = listen_address(host, port)
    app = create_app()
    log_event(log, "api_listening", host=h, port=p)

    # log_config=None keeps uvicorn on our JSON root handler.
    uvicorn.run(app, host=h, port=p, log_level="info", log_config=None)


if __name__ == "__main__":
    main()
