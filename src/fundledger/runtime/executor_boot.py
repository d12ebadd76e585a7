from __future__ import annotations

import logging
from typing import Optional

from fundledger.runtime.chain_config import LedgerConfig, load_ledger_config
from fundledger.runtime.executor import LedgerExecutor
from fundledger.runtime.ledger_logging import log_event

log = logging.getLogger("fundledger.boot")


def build_executor(cfg: Optional[LedgerConfig] = None) -> LedgerExecutor:
    """Open the ledger described by ``cfg``.

    Without ``cfg`` the config is read from FUNDLEDGER_CONFIG_PATH or the
    FUNDLEDGER_* variables. Invalid config raises ValueError before any
    database file is touched.
    """
    c = cfg if cfg is not None else load_ledger_config()
    ex = LedgerExecutor(cfg=c)
    log_event(log, "executor_booted", chain_id=c.chain_id, node_id=c.node_id, mode=c.mode,
              db_path=c.db_path, height=ex.height())
    return ex
