"""Policy settings sources with a defined reload contract.

The governance engine never reads configuration from a global. It is handed
a SettingsSource at construction and calls ``current()`` once at the start of
every intercept and every sweep; the PolicyConfig snapshot it gets back is
used for the whole of that operation.

Implementations:
    StaticSettings       — fixed policy (tests, or no config file)
    PolicySettingsLoader — policy section of the config file, hot-reloaded
                           with watchfiles; a broken edit keeps the prior policy
"""

from __future__ import annotations

import asyncio
import threading
from typing import Optional, Protocol, runtime_checkable

from enforcer.config import ConfigError, PolicyConfig, read_config_file
from enforcer.utils.logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class SettingsSource(Protocol):
    def current(self) -> PolicyConfig:
        """Snapshot of the bypass policy and USER key lifetime. No I/O."""
        ...


class StaticSettings:
    """SettingsSource that always returns the same PolicyConfig."""

    def __init__(self, policy: Optional[PolicyConfig] = None) -> None:
        self._policy = policy or PolicyConfig()

    def current(self) -> PolicyConfig:
        return self._policy


class PolicySettingsLoader:
    """Thread-safe policy holder with watchfiles hot-reload.

    Usage (in lifespan):
        loader = PolicySettingsLoader(config.policy)
        task = asyncio.create_task(loader.start_watcher(config.path))
        engine = GovernanceEngine(..., settings=loader)
    """

    def __init__(self, initial: PolicyConfig) -> None:
        self._policy = initial
        self._lock = threading.Lock()
        self.reload_count = 0

    def current(self) -> PolicyConfig:
        with self._lock:
            return self._policy

    def load(self, path: str) -> bool:
        """Re-read the policy section of ``path``.

        Returns True on success. On any read/parse/validation error the prior
        policy is kept, the error is logged, and False is returned. Never raises.
        """
        try:
            raw = read_config_file(path)
            policy = PolicyConfig.from_dict(raw.get("policy") or {})
        except (ConfigError, OSError) as exc:
            logger.error(
                "policy_reload_failed",
                path=path,
                error=str(exc),
            )
            return False

        with self._lock:
            self._policy = policy
            self.reload_count += 1
        logger.info(
            "policy_reloaded",
            path=path,
            authorized_user=policy.authorized_user,
            authorized_group=policy.authorized_group,
            days_allowed_for_user_keys=policy.days_allowed_for_user_keys,
        )
        return True

    async def start_watcher(self, path: str) -> None:
        """Reload the policy whenever ``path`` changes.

        Runs as an asyncio.Task; cancelled on shutdown. Errors inside one
        reload are logged and the watcher keeps running.
        """
        import watchfiles

        logger.info("policy_watcher_started", path=path)
        try:
            async for _ in watchfiles.awatch(path):
                try:
                    self.load(path)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:  # noqa: BLE001
                    logger.error("policy_reload_handler_error", error=str(exc), path=path)
        except asyncio.CancelledError:
            logger.debug("policy_watcher_cancelled", path=path)
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error("policy_watcher_stopped", error=str(exc), path=path)
