from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_dotenv_done = False


def load_dotenv_if_present(dotenv_path: Optional[str] = None) -> bool:
    """Load a .env file into the process environment, at most once.

    The file is ``dotenv_path``, else FUNDLEDGER_DOTENV_PATH, else ``./.env``.
    Variables already set in the environment win over the file. Returns True
    only when a file was actually read.
    """
    global _dotenv_done
    if _dotenv_done:
        return False
    _dotenv_done = True

    path = Path(dotenv_path or os.getenv("FUNDLEDGER_DOTENV_PATH") or ".env").expanduser()
    if not path.is_file():
        return False
    load_dotenv(dotenv_path=path, override=False)
    return True


def reset_dotenv_loaded_flag() -> None:
    global _dotenv_done
    _dotenv_done = False
