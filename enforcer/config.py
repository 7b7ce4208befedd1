"""Config loading for the SSH key enforcer.

Reads `.enforcer/config.yaml` (or `~/.enforcer/config.yaml`).
Raises SystemExit on parse errors, a missing `version` field, or invalid values.
If no config file is found, returns default values (safe to run without config:
no bypass paths are configured, so every untracked key is revoked).

Config search order:
  1. `config_path` argument (if provided — for testing or explicit override)
  2. ENFORCER_CONFIG environment variable (if set)
  3. `.enforcer/config.yaml` (working directory — for development)
  4. `~/.enforcer/config.yaml` (home directory — for production deployments)

Environment variable overrides:
  ENFORCER_PORT           — overrides server.port
  ENFORCER_PLATFORM_TOKEN — platform API token (never read from the file)
  ENFORCER_CONFIG         — sets an explicit config file path to try first
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml

from enforcer.constants import (
    DEFAULT_AUDIT_RETENTION_DAYS,
    DEFAULT_KEY_ALGORITHM,
    DEFAULT_ORPHAN_GRACE_MINUTES,
    DEFAULT_PLATFORM_TIMEOUT_S,
    DEFAULT_RSA_BITS,
    DEFAULT_SWEEP_HOUR_UTC,
    DEFAULT_USER_KEY_RETENTION_DAYS,
    MIN_RSA_BITS,
    SUPPORTED_KEY_ALGORITHMS,
)
from enforcer.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

DEFAULT_CONFIG_PATHS = [
    ".enforcer/config.yaml",
    os.path.expanduser("~/.enforcer/config.yaml"),
]


class ConfigError(ValueError):
    """A config section holds an invalid value."""


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class PolicyConfig:
    """Bypass policy and USER key lifetime.

    authorized_user:  Login name of the automation account whose externally
                      created keys are accepted as BAMBOO keys.
    authorized_group: Group whose members' externally created keys are
                      accepted as BYPASS keys.
    Either may be None, which disables that bypass path.
    """

    authorized_user: Optional[str] = None
    authorized_group: Optional[str] = None
    days_allowed_for_user_keys: int = DEFAULT_USER_KEY_RETENTION_DAYS

    @classmethod
    def from_dict(cls, raw: dict) -> "PolicyConfig":
        days = raw.get("days_allowed_for_user_keys", DEFAULT_USER_KEY_RETENTION_DAYS)
        if not isinstance(days, int) or isinstance(days, bool) or days < 1:
            raise ConfigError(
                f"policy.days_allowed_for_user_keys must be a positive integer, got {days!r}"
            )
        return cls(
            authorized_user=_blank_to_none(raw.get("authorized_user")),
            authorized_group=_blank_to_none(raw.get("authorized_group")),
            days_allowed_for_user_keys=days,
        )


@dataclass
class LedgerConfig:
    path: str = "~/.enforcer/ledger.db"


@dataclass
class AuditConfig:
    enabled: bool = True
    path: str = "~/.enforcer/audit.db"
    retention_days: int = DEFAULT_AUDIT_RETENTION_DAYS


@dataclass
class SweepConfig:
    """Daily expiry sweep schedule."""

    hour_utc: int = DEFAULT_SWEEP_HOUR_UTC
    orphan_grace_minutes: int = DEFAULT_ORPHAN_GRACE_MINUTES
    enabled: bool = True


@dataclass
class PlatformConfig:
    """Source-hosting platform REST endpoint.

    token is populated from ENFORCER_PLATFORM_TOKEN only.
    """

    base_url: str = "http://localhost:7990"
    timeout_s: float = DEFAULT_PLATFORM_TIMEOUT_S
    token: Optional[str] = None


@dataclass
class NotificationConfig:
    webhook_url: Optional[str] = None


@dataclass
class KeyGenConfig:
    algorithm: str = DEFAULT_KEY_ALGORITHM  # "rsa" | "ed25519"
    rsa_bits: int = DEFAULT_RSA_BITS


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8742


@dataclass
class Config:
    """Root configuration object populated from .enforcer/config.yaml."""

    version: int = SUPPORTED_CONFIG_VERSION
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    sweep: SweepConfig = field(default_factory=SweepConfig)
    platform: PlatformConfig = field(default_factory=PlatformConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    keys: KeyGenConfig = field(default_factory=KeyGenConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    path: Optional[str] = None  # loaded file; watched for policy hot-reload

    @classmethod
    def defaults(cls) -> "Config":
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are ignored.

        Raises:
            ConfigError: On an invalid value in any section.
        """
        policy = PolicyConfig.from_dict(_section(raw, "policy"))

        ledger_raw = _section(raw, "ledger")
        ledger = LedgerConfig(path=ledger_raw.get("path", LedgerConfig.path))

        audit_raw = _section(raw, "audit")
        audit = AuditConfig(
            enabled=bool(audit_raw.get("enabled", True)),
            path=audit_raw.get("path", AuditConfig.path),
            retention_days=audit_raw.get("retention_days", DEFAULT_AUDIT_RETENTION_DAYS),
        )

        sweep_raw = _section(raw, "sweep")
        hour_utc = sweep_raw.get("hour_utc", DEFAULT_SWEEP_HOUR_UTC)
        if not isinstance(hour_utc, int) or not 0 <= hour_utc <= 23:
            raise ConfigError(f"sweep.hour_utc must be an integer 0-23, got {hour_utc!r}")
        sweep = SweepConfig(
            hour_utc=hour_utc,
            orphan_grace_minutes=sweep_raw.get(
                "orphan_grace_minutes", DEFAULT_ORPHAN_GRACE_MINUTES
            ),
            enabled=bool(sweep_raw.get("enabled", True)),
        )

        platform_raw = _section(raw, "platform")
        platform = PlatformConfig(
            base_url=str(platform_raw.get("base_url", PlatformConfig.base_url)).rstrip("/"),
            timeout_s=float(platform_raw.get("timeout_s", DEFAULT_PLATFORM_TIMEOUT_S)),
        )

        notifications = NotificationConfig(
            webhook_url=_blank_to_none(_section(raw, "notifications").get("webhook_url")),
        )

        keys_raw = _section(raw, "keys")
        algorithm = keys_raw.get("algorithm", DEFAULT_KEY_ALGORITHM)
        if algorithm not in SUPPORTED_KEY_ALGORITHMS:
            raise ConfigError(
                f"keys.algorithm: '{algorithm}' is not supported. "
                f"Supported values: {sorted(SUPPORTED_KEY_ALGORITHMS)}."
            )
        rsa_bits = keys_raw.get("rsa_bits", DEFAULT_RSA_BITS)
        if not isinstance(rsa_bits, int) or rsa_bits < MIN_RSA_BITS:
            raise ConfigError(f"keys.rsa_bits must be an integer >= {MIN_RSA_BITS}")
        keys = KeyGenConfig(algorithm=algorithm, rsa_bits=rsa_bits)

        server_raw = _section(raw, "server")
        server = ServerConfig(
            host=server_raw.get("host", "127.0.0.1"),
            port=server_raw.get("port", 8742),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            policy=policy,
            ledger=ledger,
            audit=audit,
            sweep=sweep,
            platform=platform,
            notifications=notifications,
            keys=keys,
            server=server,
            path=path,
        )


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return value


def _blank_to_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# ─── Config loading ───────────────────────────────────────────────────────────


def read_config_file(path: str) -> dict:
    """Parse and version-check one config file.

    Shared by load_config() (startup, fatal on error) and the policy
    hot-reload watcher (non-fatal: keeps the prior policy).

    Raises:
        ConfigError: On YAML error, non-mapping content, or bad version.
        OSError:     If the file cannot be read.
    """
    with open(path) as fh:
        try:
            raw = yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse {path}: {exc}") from exc

    if not isinstance(raw, dict):
        if raw is None:
            raise ConfigError(
                f"{path} is missing the required 'version' field. "
                "Add 'version: 1' to the top of your config file."
            )
        raise ConfigError(f"{path} is not a valid YAML mapping.")

    version = raw.get("version")
    if version is None:
        raise ConfigError(
            f"{path} is missing the required 'version' field. "
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        raise ConfigError(
            f"Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )
    return raw


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate enforcer configuration.

    If no file is found, returns default Config (not an error).
    If a file is found but invalid, writes the error to stderr and raises
    SystemExit(1).

    Raises:
        SystemExit(1): On YAML parse error, missing/unsupported ``version``,
                       an invalid section value, or invalid ``ENFORCER_PORT``.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("ENFORCER_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    if found_path is None:
        logger.info("config_file_not_found", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        return config

    logger.info("config_loading", path=found_path)

    try:
        raw = read_config_file(found_path)
        config = Config.from_dict(raw, path=found_path)
    except ConfigError as exc:
        print(
            f"CONFIG ERROR: {exc}\nThe enforcer refuses to start with an invalid config.",
            file=sys.stderr,
        )
        raise SystemExit(1)
    except OSError as exc:
        print(f"CONFIG ERROR: Could not read {found_path}: {exc}", file=sys.stderr)
        raise SystemExit(1)

    _apply_env_overrides(config)

    if config.policy.authorized_user is None and config.policy.authorized_group is None:
        logger.warning(
            "no_bypass_policy_configured",
            consequence="every key not generated by the enforcer will be revoked",
        )
    if config.server.host == "0.0.0.0":
        logger.warning(
            "insecure_bind_address",
            host=config.server.host,
            hint="key generation returns private keys; restrict access with ENFORCER_API_TOKEN",
        )

    logger.info(
        "config_loaded",
        path=found_path,
        version=config.version,
        authorized_user=config.policy.authorized_user,
        authorized_group=config.policy.authorized_group,
        days_allowed_for_user_keys=config.policy.days_allowed_for_user_keys,
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Raises:
        SystemExit(1): If ENFORCER_PORT is set but not a valid integer.
    """
    env_port = os.environ.get("ENFORCER_PORT")
    if env_port is not None:
        try:
            config.server.port = int(env_port)
        except ValueError:
            print(
                f"CONFIG ERROR: ENFORCER_PORT environment variable is not a valid "
                f"integer: '{env_port}'",
                file=sys.stderr,
            )
            raise SystemExit(1)

    token = os.environ.get("ENFORCER_PLATFORM_TOKEN")
    if token:
        config.platform.token = token
