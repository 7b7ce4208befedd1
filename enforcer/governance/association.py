"""Resource association: which repository or project does a key open?

Only the first grant on a page of size one is consulted; in this model an
access key is bound to a single resource. The record is written back to the
ledger whether or not a grant was found, so any other pending field changes
on it are flushed too.
"""

from __future__ import annotations

from enforcer.constants import ASSOCIATION_PAGE_SIZE
from enforcer.ledger.models import TrackedKeyRecord
from enforcer.ledger.protocol import KeyLedger
from enforcer.platform.protocol import AccessGrantIndex, PlatformError
from enforcer.utils.logger import get_logger

logger = get_logger(__name__)


class ResourceAssociationResolver:
    def __init__(self, grant_index: AccessGrantIndex, ledger: KeyLedger) -> None:
        self._grant_index = grant_index
        self._ledger = ledger

    async def associate(self, record: TrackedKeyRecord) -> TrackedKeyRecord:
        """Set record.association from the first access grant, then persist.

        A grant-lookup failure is logged and the record is persisted without
        an association. Ledger errors propagate.
        """
        if record.key_id is None:
            logger.debug("association_skipped_no_native_id", record_id=record.id)
        else:
            try:
                page = await self._grant_index.find_grants_for_key(
                    record.key_id, start=0, limit=ASSOCIATION_PAGE_SIZE
                )
            except PlatformError as exc:
                logger.warning(
                    "association_lookup_failed",
                    key_id=record.key_id,
                    error=str(exc),
                    status_code=exc.status_code,
                )
            else:
                if page.values:
                    grant = page.values[0]
                    record.association = grant.resource
                    logger.info(
                        "association_found",
                        key_id=record.key_id,
                        resource_kind=grant.resource.kind,
                        resource_id=grant.resource.id,
                    )

        await self._ledger.update(record)
        return record
