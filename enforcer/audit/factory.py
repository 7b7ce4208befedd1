"""Audit backend factory — backend selection and initialization.

Backend selection:
  1. config.audit.enabled is false → NullAuditBackend
  2. Otherwise                     → LocalSQLiteAuditBackend

LocalSQLiteAuditBackend path:
  1. ENFORCER_AUDIT_DB_PATH environment variable
  2. config.audit.path
  3. ~/.enforcer/audit.db (default)
"""

from __future__ import annotations

import os
from typing import Optional

from enforcer.audit.protocol import AuditBackend, NullAuditBackend
from enforcer.utils.logger import get_logger

logger = get_logger(__name__)

_ENV_AUDIT_DB_PATH = "ENFORCER_AUDIT_DB_PATH"
_DEFAULT_AUDIT_DB_PATH = "~/.enforcer/audit.db"


async def create_audit_backend(config: Optional[object] = None) -> AuditBackend:
    """Create and initialize the appropriate audit backend.

    Raises:
      RuntimeError: If the SQLite audit database has an incompatible schema
                    version. Propagated to the FastAPI lifespan.
    """
    audit_config = getattr(config, "audit", None)
    if audit_config is not None and not getattr(audit_config, "enabled", True):
        logger.info("audit_backend_selected", backend="NullAuditBackend")
        return NullAuditBackend()

    from enforcer.audit.sqlite_backend import LocalSQLiteAuditBackend

    configured = getattr(audit_config, "path", None)
    db_path = os.getenv(_ENV_AUDIT_DB_PATH) or configured or _DEFAULT_AUDIT_DB_PATH
    backend = LocalSQLiteAuditBackend(db_path=db_path)
    await backend.initialize()

    logger.info(
        "audit_backend_selected",
        backend="LocalSQLiteAuditBackend",
        db_path=backend.db_path,
    )
    return backend
