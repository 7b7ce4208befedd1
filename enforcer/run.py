"""Programmatic uvicorn entry point.

Usage:
    python -m enforcer.run
    enforcer                 # via pyproject.toml [project.scripts]

Host and port come from the loaded config (127.0.0.1:8742 by default).
"""

from __future__ import annotations

import uvicorn

from enforcer.config import load_config

# Key events arrive in bursts when many users upload keys at once; cap the
# in-flight connections rather than queueing without bound.
UVICORN_LIMIT_CONCURRENCY: int = 100

UVICORN_BACKLOG: int = 50

UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def main() -> None:
    """Start the enforcer server.

    Raises:
        SystemExit: Propagated from load_config() on config errors.
    """
    config = load_config()

    uvicorn.run(
        "enforcer.main:app",
        host=config.server.host,
        port=config.server.port,
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
        backlog=UVICORN_BACKLOG,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
    )


if __name__ == "__main__":
    main()
