"""
mother_registry.sync: Idempotent upsert of subject records.

Re-submitting data the registry already holds is a successful no-op
(``already_exists``), never an error. Any other failure surfaces as a
``SyncError``; nothing is retried here.
"""

from __future__ import annotations

import logging
from enum import Enum

from mother_registry.errors import SyncError
from mother_registry.flatten import Record
from mother_registry.registry import RegistryClient, UpsertStatus

logger = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class SyncOrchestrator:
    """Send ``{subject: record}`` to the registry with one upsert call."""

    def __init__(self, registry: RegistryClient):
        self.registry = registry

    async def sync_record(self, subject_id: str, record: Record) -> SyncStatus:
        return await self.sync_records({subject_id: record})

    async def sync_records(self, records: dict[str, Record]) -> SyncStatus:
        subjects = list(records)
        outcome = await self.registry.upsert(records)

        if outcome.status is UpsertStatus.OK:
            logger.info("Synced %d subject(s): %s", len(subjects), ", ".join(subjects))
            return SyncStatus.CREATED
        if outcome.status is UpsertStatus.ALREADY_EXISTS:
            logger.info("Idempotent no-op, data already exists for %s", ", ".join(subjects))
            return SyncStatus.ALREADY_EXISTS

        logger.error("Sync failed for %s: %s", ", ".join(subjects), outcome.detail)
        raise SyncError(outcome.detail or "Unknown error occurred") from outcome.error
