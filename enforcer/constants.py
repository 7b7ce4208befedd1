"""Shared constants for the SSH key enforcer.

Policy defaults and numeric caps used across modules are defined here.
No magic numbers in other modules: import from here.
"""

# ─── Key Generation ──────────────────────────────────────────────────────────

# Comment embedded in every system-generated public key and stored as the
# ledger label. Users see it in the platform's SSH key list.
GENERATED_KEY_COMMENT: str = "ENTERPRISE USER KEY"

# Supported key algorithms for OpenSSHKeyPairGenerator.
SUPPORTED_KEY_ALGORITHMS: frozenset[str] = frozenset({"rsa", "ed25519"})

DEFAULT_KEY_ALGORITHM: str = "rsa"
DEFAULT_RSA_BITS: int = 2048
MIN_RSA_BITS: int = 2048

# ─── Policy Defaults ─────────────────────────────────────────────────────────

# Lifetime of USER keys before the sweep revokes them.
DEFAULT_USER_KEY_RETENTION_DAYS: int = 90

# ─── Association Lookup ──────────────────────────────────────────────────────

# A key is expected to grant access to at most one resource; only the first
# grant on the first page is recorded.
ASSOCIATION_PAGE_SIZE: int = 1

# ─── Sweep / Reconciliation ──────────────────────────────────────────────────

# Hour of day (UTC) the daily expiry sweep runs.
DEFAULT_SWEEP_HOUR_UTC: int = 3

# Records with no native key id older than this are considered orphans
# (generated, but native registration never completed).
DEFAULT_ORPHAN_GRACE_MINUTES: int = 15

# Delay before the sweeper retries after an unexpected failure.
SWEEP_RETRY_SECONDS: int = 3600

# ─── Audit ───────────────────────────────────────────────────────────────────

DEFAULT_AUDIT_RETENTION_DAYS: int = 365

# ─── Platform Client ─────────────────────────────────────────────────────────

DEFAULT_PLATFORM_TIMEOUT_S: float = 10.0

# Page size used when scanning the user directory for an id lookup.
USER_DIRECTORY_PAGE_SIZE: int = 100

# Upper bound on directory pages scanned for one id lookup.
USER_DIRECTORY_MAX_PAGES: int = 50
