"""
mother_registry.pipeline: From an agent card payload to a synced registry entry.

    payload -> flatten -> + skill_tags -> normalize_values
            -> IdentityResolver -> SyncOrchestrator

Minting and syncing are not atomic. When the mint succeeds and the sync then
fails, the minted identifier is logged at error level and the failure is
returned to the caller. A re-submission of the same agent card URL then mints
again, since the first identifier was never stored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from mother_registry.config import (
    AGENT_KEYWORD,
    KEYWORDS_PREDICATE,
    MOTHER_REGISTRY_KEYWORD,
    RegistryContext,
)
from mother_registry.errors import InvalidPayloadError
from mother_registry.flatten import Record, flatten, normalize_values
from mother_registry.identity import NATURAL_KEY_FIELD, IdentityResolver
from mother_registry.skills import SKILL_TAGS_FIELD, collect_skill_tags
from mother_registry.sync import SyncOrchestrator, SyncStatus

logger = logging.getLogger(__name__)

MINT_TX_FIELD = "mint_transaction_hash"


@dataclass(frozen=True)
class ProcessResult:
    nft_id: str
    mint_transaction: Optional[str]
    status: SyncStatus
    timestamp: str

    def to_dict(self) -> dict:
        return {
            "nftId": self.nft_id,
            "mintTransaction": self.mint_transaction,
            "status": self.status.value,
            "timestamp": self.timestamp,
        }


def build_agent_record(payload: dict[str, Any], agent_card_url: Optional[str] = None) -> Record:
    """Flatten and normalize an agent card into the record stored for it."""
    flat = flatten(payload)
    if not flat:
        raise InvalidPayloadError("Provided JSON object did not contain any usable key/value pairs")
    flat[SKILL_TAGS_FIELD] = collect_skill_tags(payload)

    record = normalize_values(flat)
    if agent_card_url:
        record[NATURAL_KEY_FIELD] = agent_card_url
    else:
        record.pop(NATURAL_KEY_FIELD, None)
    record[KEYWORDS_PREDICATE] = [AGENT_KEYWORD, MOTHER_REGISTRY_KEYWORD]
    return record


async def process_agent_payload(ctx: RegistryContext, payload: dict[str, Any],
                                agent_card_url: Optional[str] = None) -> ProcessResult:
    record = build_agent_record(payload, agent_card_url)

    resolver = IdentityResolver(ctx.registry, ctx.minter, ctx.trusted_accounts)
    resolution = await resolver.resolve(agent_card_url)
    if resolution.mint_transaction:
        record[MINT_TX_FIELD] = resolution.mint_transaction

    logger.info("Syncing agent data for subject %s", resolution.subject_id)
    try:
        status = await SyncOrchestrator(ctx.registry).sync_record(resolution.subject_id, record)
    except Exception:
        if resolution.minted:
            logger.error(
                "Identity %s was minted (tx %s) but its data was not synced",
                resolution.subject_id, resolution.mint_transaction,
                extra={"event": "minted_unsynced", "nft_id": resolution.subject_id},
            )
        raise

    return ProcessResult(
        nft_id=resolution.subject_id,
        mint_transaction=resolution.mint_transaction if status is SyncStatus.CREATED else None,
        status=status,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
