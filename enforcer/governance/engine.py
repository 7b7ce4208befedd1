"""Key governance engine.

Reconciles two sources of truth: the platform's native key store (what the
platform will accept) and the enforcer's ledger (what the enforcer sanctions).

Entry points:
  - intercept_system_key()                 — every key-added event
  - forget_deleted_key()                   — every key-removed event
  - generate_new_key_pair_for()            — self-service (re)issuance
  - replace_expired_keys_and_notify_users() — scheduled sweep
  - purge_orphaned_records()               — scheduled consistency check
  - get_keys_for_user()                    — reporting

intercept and forget never call each other. A revocation issued by intercept
comes back later as a key-removed event, and forget only ever deletes ledger
rows, so a revoke cannot recurse into another revoke.

Every decision is written to the audit backend as a structured AuditEvent.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from enforcer.audit.models import AuditEvent, DecisionType
from enforcer.audit.protocol import AuditBackend, NullAuditBackend
from enforcer.constants import DEFAULT_ORPHAN_GRACE_MINUTES, GENERATED_KEY_COMMENT
from enforcer.governance.association import ResourceAssociationResolver
from enforcer.governance.policy import BypassDecision, evaluate_bypass
from enforcer.ledger.models import KeyType, TrackedKeyRecord
from enforcer.ledger.protocol import DuplicateKeyError, KeyLedger, LedgerError
from enforcer.platform.keygen import openssh_fingerprint
from enforcer.platform.models import KeyPair, NativeKey, Principal
from enforcer.platform.protocol import (
    AccessGrantIndex,
    KeyPairGenerator,
    NativeKeyStore,
    NotificationSink,
    PlatformError,
    PrincipalDirectory,
)
from enforcer.settings import SettingsSource
from enforcer.utils.logger import get_logger
from enforcer.utils.ulid import generate_ulid

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InterceptOutcome(str, Enum):
    ALREADY_TRACKED = "ALREADY_TRACKED"
    ACCEPTED_BAMBOO = "ACCEPTED_BAMBOO"
    ACCEPTED_BYPASS = "ACCEPTED_BYPASS"
    REVOKED = "REVOKED"


@dataclass
class SweepResult:
    """Outcome of one expiry sweep. failed records are retried next sweep."""

    candidates: int = 0
    expired: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {"candidates": self.candidates, "expired": self.expired, "failed": self.failed}


class GovernanceEngine:
    """Decision core for SSH key governance.

    All collaborators are injected; the engine holds no configuration of its
    own beyond the SettingsSource it re-reads per operation.
    """

    def __init__(
        self,
        *,
        ledger: KeyLedger,
        key_store: NativeKeyStore,
        grant_index: AccessGrantIndex,
        directory: PrincipalDirectory,
        generator: KeyPairGenerator,
        notifier: NotificationSink,
        settings: SettingsSource,
        audit_backend: Optional[AuditBackend] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._ledger = ledger
        self._key_store = key_store
        self._directory = directory
        self._generator = generator
        self._notifier = notifier
        self._settings = settings
        self._audit_backend: AuditBackend = audit_backend or NullAuditBackend()
        self._clock: Callable[[], datetime] = clock or _utcnow
        self._resolver = ResourceAssociationResolver(grant_index, ledger)
        self._sweep_lock = asyncio.Lock()

    # ── Key added ─────────────────────────────────────────────────────────────

    async def intercept_system_key(self, key: NativeKey, principal: Principal) -> InterceptOutcome:
        """Classify a newly registered native key and act on it.

        Idempotent: a key already in the ledger is left alone. Performs at
        most one ledger write or one revocation, never both.

        Raises:
            LedgerError:   Bypass record could not be stored. The key is NOT
                           revoked; the caller should let the platform re-deliver.
            PlatformError: Directory lookup or revocation failed.
        """
        logger.debug("key_check_started", key_id=key.id, principal_id=principal.id)

        if await self._ledger.find_by_text(key.text) is not None:
            logger.info("key_already_tracked", key_id=key.id)
            await self._record_decision("ALREADY_TRACKED", key_id=key.id, principal_id=principal.id)
            return InterceptOutcome.ALREADY_TRACKED

        policy = self._settings.current()
        decision = await evaluate_bypass(principal, policy, self._directory)

        if decision is BypassDecision.NONE:
            await self._key_store.remove(key.id)
            logger.warning(
                "key_revoked",
                key_id=key.id,
                principal_id=principal.id,
                principal=principal.url_slug,
            )
            await self._record_decision("REVOKED", key_id=key.id, principal_id=principal.id)
            return InterceptOutcome.REVOKED

        try:
            record = await self._ledger.create_from_external_key(key, principal, decision.key_type)
        except DuplicateKeyError:
            # A concurrent delivery of the same event recorded it first.
            logger.info("bypass_key_recorded_concurrently", key_id=key.id)
            await self._record_decision("ALREADY_TRACKED", key_id=key.id, principal_id=principal.id)
            return InterceptOutcome.ALREADY_TRACKED
        except LedgerError as exc:
            logger.error(
                "bypass_key_record_failed",
                key_id=key.id,
                principal_id=principal.id,
                key_type=decision.key_type.value,
                error=str(exc),
            )
            await self._record_decision(
                "LEDGER_WRITE_FAILED",
                key_id=key.id,
                principal_id=principal.id,
                detail=f"{decision.key_type.value}: {exc}",
            )
            raise

        await self._record_decision(
            "ACCEPTED_BAMBOO" if decision is BypassDecision.BAMBOO else "ACCEPTED_BYPASS",
            record=record,
        )
        logger.info(
            "bypass_key_recorded",
            key_id=key.id,
            key_type=record.key_type.value,
            principal=principal.url_slug,
        )

        try:
            await self.associate_key_with_resource(record)
        except LedgerError as exc:
            logger.error("association_store_failed", key_id=key.id, error=str(exc))

        if decision is BypassDecision.BAMBOO:
            return InterceptOutcome.ACCEPTED_BAMBOO
        return InterceptOutcome.ACCEPTED_BYPASS

    async def associate_key_with_resource(self, record: TrackedKeyRecord) -> TrackedKeyRecord:
        record = await self._resolver.associate(record)
        if record.association is not None:
            await self._record_decision(
                "ASSOCIATED",
                record=record,
                detail=f"{record.association.kind}:{record.association.id}",
            )
        return record

    # ── Key removed ───────────────────────────────────────────────────────────

    async def forget_deleted_key(self, key: NativeKey) -> bool:
        """Drop the ledger record for a key the platform no longer holds.

        Returns False when nothing was tracked for the key; that is logged,
        not treated as an error.

        Raises:
            LedgerError: The delete itself failed; the caller may retry.
        """
        try:
            removed = await self._ledger.forget_matching(key)
        except LedgerError as exc:
            logger.error("forget_failed", key_id=key.id, error=str(exc))
            raise

        if removed:
            logger.info("key_forgotten", key_id=key.id)
            await self._record_decision("FORGOTTEN", key_id=key.id)
        else:
            logger.debug("forget_unknown_key", key_id=key.id)
            await self._record_decision("FORGET_UNKNOWN", key_id=key.id)
        return removed

    # ── Self-service generation ───────────────────────────────────────────────

    async def generate_new_key_pair_for(self, principal: Principal) -> KeyPair:
        """Replace the principal's USER key with a freshly generated pair.

        Order matters: the ledger row for the new public key is written
        BEFORE the key is registered with the platform, otherwise the
        platform's key-added event could reach intercept_system_key() first
        and the new key would be revoked as untracked.

        Returns the KeyPair; the private key is never persisted.
        """
        await self._remove_existing_user_keys_for(principal)

        key_pair = await self._generator.generate(GENERATED_KEY_COMMENT)
        record = await self._ledger.create_for_generated_key(
            principal, key_pair.public_key, GENERATED_KEY_COMMENT
        )

        try:
            native_key = await self._key_store.add_for_user(principal, key_pair.public_key)
        except Exception as exc:
            logger.error(
                "generation_registration_failed",
                principal_id=principal.id,
                record_id=record.id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            await self._record_decision("GENERATION_FAILED", record=record, detail=type(exc).__name__)
            try:
                await self._ledger.remove(record)
            except LedgerError as cleanup_exc:
                logger.error(
                    "orphan_left_for_reconciliation",
                    record_id=record.id,
                    error=str(cleanup_exc),
                )
            raise

        record = await self._ledger.update_with_native_id(record, native_key)
        logger.info(
            "user_key_generated",
            key_id=native_key.id,
            principal_id=principal.id,
            principal=principal.url_slug,
        )
        await self._record_decision("GENERATED", record=record)
        return key_pair

    async def _remove_existing_user_keys_for(self, principal: Principal) -> None:
        for record in await self._ledger.keys_for_principal(principal.id):
            if record.key_type is not KeyType.USER:
                continue
            if record.key_id is None:
                # Never registered, so no key-removed event will clean it up.
                await self._ledger.remove(record)
                continue
            # Fires a key-removed event that forget_deleted_key() handles.
            await self._key_store.remove(record.key_id)
            logger.info("previous_user_key_purged", key_id=record.key_id, principal_id=principal.id)

    # ── Scheduled sweep ───────────────────────────────────────────────────────

    async def replace_expired_keys_and_notify_users(self) -> SweepResult:
        """Revoke every USER key older than the retention window.

        Best effort per record: one failure is logged and the sweep moves on.
        Runs are serialized so overlapping triggers cannot double-notify.
        """
        async with self._sweep_lock:
            policy = self._settings.current()
            cutoff = self._clock() - timedelta(days=policy.days_allowed_for_user_keys)
            expired = await self._ledger.list_expired(cutoff, KeyType.USER)
            result = SweepResult(candidates=len(expired))

            logger.info(
                "expiry_sweep_started",
                candidates=len(expired),
                cutoff=cutoff.isoformat(),
                days_allowed_for_user_keys=policy.days_allowed_for_user_keys,
            )

            for record in expired:
                try:
                    await self._expire(record)
                    result.expired += 1
                except Exception as exc:
                    result.failed += 1
                    logger.error(
                        "expiry_failed",
                        principal_id=record.principal_id,
                        key_id=record.key_id,
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    await self._record_decision("EXPIRY_FAILED", record=record, detail=type(exc).__name__)

            logger.info("expiry_sweep_finished", **result.to_dict())
            return result

    async def _expire(self, record: TrackedKeyRecord) -> None:
        try:
            principal = await self._directory.get_by_id(record.principal_id)
        except PlatformError as exc:
            logger.warning("principal_lookup_failed", principal_id=record.principal_id, error=str(exc))
            principal = None
        username = principal.url_slug if principal is not None else f"UNKNOWN_ID:{record.principal_id}"

        logger.info("expired_key_removing", user=username, key_id=record.key_id)
        if record.key_id is not None:
            await self._key_store.remove(record.key_id)
        await self._ledger.remove(record)
        await self._notifier.notify_expired_key(record.principal_id)
        await self._record_decision("EXPIRED", record=record)

    async def purge_orphaned_records(
        self, grace: timedelta = timedelta(minutes=DEFAULT_ORPHAN_GRACE_MINUTES)
    ) -> int:
        """Delete generated records whose native registration never completed."""
        orphans = await self._ledger.list_orphans(self._clock() - grace)
        purged = 0
        for record in orphans:
            try:
                await self._ledger.remove(record)
            except LedgerError as exc:
                logger.error("orphan_purge_failed", record_id=record.id, error=str(exc))
                continue
            purged += 1
            fingerprint = openssh_fingerprint(record.text)
            # The native registration may have landed after all; operators reconcile by fingerprint.
            logger.warning(
                "orphan_purged",
                record_id=record.id,
                principal_id=record.principal_id,
                created_at=record.created_at.isoformat(),
                fingerprint=fingerprint,
                key_text=record.text,
            )
            await self._record_decision("ORPHAN_PURGED", record=record, detail=fingerprint)
        return purged

    # ── Reporting ─────────────────────────────────────────────────────────────

    async def get_keys_for_user(self, username: str) -> list[TrackedKeyRecord]:
        principal = await self._directory.get_by_name(username)
        if principal is None:
            logger.debug("unknown_user_no_keys", username=username)
            return []
        return await self._ledger.keys_for_principal(principal.id)

    # ── Audit ─────────────────────────────────────────────────────────────────

    async def _record_decision(
        self,
        decision: DecisionType,
        *,
        record: Optional[TrackedKeyRecord] = None,
        key_id: Optional[int] = None,
        principal_id: Optional[int] = None,
        detail: Optional[str] = None,
    ) -> None:
        if record is not None:
            key_id = record.key_id if key_id is None else key_id
            principal_id = record.principal_id if principal_id is None else principal_id
        event = AuditEvent(
            event_id=generate_ulid(),
            timestamp=self._clock(),
            decision=decision,
            key_id=key_id,
            record_id=record.id if record is not None else None,
            principal_id=principal_id,
            key_type=record.key_type.value if record is not None else None,
            detail=detail,
        )
        await self._audit_backend.log_event(event)
