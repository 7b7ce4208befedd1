"""Unit tests for ResourceAssociationResolver."""

from __future__ import annotations

from unittest.mock import AsyncMock

from enforcer.constants import GENERATED_KEY_COMMENT
from enforcer.governance.association import ResourceAssociationResolver
from enforcer.ledger.models import KeyType, TrackedKeyRecord
from enforcer.platform.models import AccessGrant, NativeKey, Principal, ResourceRef

OWNER = Principal(id=1, name="deploy")


async def test_first_grant_wins(ledger, grant_index) -> None:
    grant_index.grants[5] = [
        AccessGrant(ResourceRef.repository(10)),
        AccessGrant(ResourceRef.repository(11)),
    ]
    record = await ledger.create_from_external_key(NativeKey(5, "ssh-rsa K"), OWNER, KeyType.BYPASS)

    result = await ResourceAssociationResolver(grant_index, ledger).associate(record)

    assert result.association == ResourceRef.repository(10)
    assert grant_index.calls == [(5, 0, 1)]
    assert (await ledger.find_by_text("ssh-rsa K")).repo_id == 10


async def test_no_grant_still_persists(grant_index, clock) -> None:
    ledger = AsyncMock()
    record = TrackedKeyRecord(
        id=1, key_id=6, text="ssh-rsa N", principal_id=OWNER.id, key_type=KeyType.BYPASS, created_at=clock.now
    )

    await ResourceAssociationResolver(grant_index, ledger).associate(record)

    ledger.update.assert_awaited_once_with(record)
    assert record.association is None


async def test_lookup_failure_is_swallowed(ledger, grant_index) -> None:
    grant_index.fail = True
    record = await ledger.create_from_external_key(NativeKey(7, "ssh-rsa L"), OWNER, KeyType.BAMBOO)

    result = await ResourceAssociationResolver(grant_index, ledger).associate(record)

    assert result.association is None


async def test_unbound_record_skips_lookup(ledger, grant_index) -> None:
    record = await ledger.create_for_generated_key(OWNER, "ssh-rsa M", GENERATED_KEY_COMMENT)

    await ResourceAssociationResolver(grant_index, ledger).associate(record)

    assert grant_index.calls == []
