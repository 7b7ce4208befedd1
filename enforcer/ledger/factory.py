"""Key ledger factory.

Path resolution:
  1. ENFORCER_LEDGER_DB_PATH environment variable
  2. config.ledger.path
  3. ~/.enforcer/ledger.db (default)

LocalSQLiteKeyLedger.initialize() raises RuntimeError on an incompatible
PRAGMA user_version; the FastAPI lifespan lets it propagate so the process
refuses to start rather than governing keys against an unknown schema.
"""

from __future__ import annotations

import os
from typing import Optional

from enforcer.ledger.sqlite_ledger import LocalSQLiteKeyLedger
from enforcer.utils.logger import get_logger

logger = get_logger(__name__)

_ENV_LEDGER_DB_PATH = "ENFORCER_LEDGER_DB_PATH"
_DEFAULT_LEDGER_DB_PATH = "~/.enforcer/ledger.db"


async def create_key_ledger(config: Optional[object] = None) -> LocalSQLiteKeyLedger:
    """Create and initialize the key ledger.

    Args:
        config: Application Config (reads config.ledger.path when present).

    Returns:
        Initialized LocalSQLiteKeyLedger.
    """
    configured = getattr(getattr(config, "ledger", None), "path", None)
    db_path = os.getenv(_ENV_LEDGER_DB_PATH) or configured or _DEFAULT_LEDGER_DB_PATH

    ledger = LocalSQLiteKeyLedger(db_path=db_path)
    await ledger.initialize()

    logger.info("key_ledger_ready", db_path=ledger.db_path)
    return ledger
