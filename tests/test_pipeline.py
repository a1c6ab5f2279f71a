"""Tests for the agent card pipeline: record building, identity resolution and sync."""

import logging

import pytest

from mother_registry.config import AGENT_KEYWORD, KEYWORDS_PREDICATE, MOTHER_REGISTRY_KEYWORD
from mother_registry.errors import InvalidPayloadError, RegistryError, SyncError
from mother_registry.pipeline import build_agent_record, process_agent_payload
from mother_registry.sync import SyncStatus

CARD_URL = "https://agent.example/card.json"
CARD = {
    "name": "Echo",
    "version": 2,
    "provider": {"organization": "Acme", "url": "https://acme.io"},
    "capabilities": {"streaming": True},
    "skills": [{"id": "s1", "tags": ["search", "web"]}],
}


class TestBuildRecord:
    def test_record_shape(self):
        record = build_agent_record(CARD, CARD_URL)
        assert record["name"] == "Echo"
        assert record["version"] == "2"
        assert record["provider:organization"] == "Acme"
        assert record["capabilities:streaming"] == "true"
        assert record["skills"] == ['{"id":"s1","tags":["search","web"]}']
        assert record["skill_tags"] == ["search", "web"]
        assert record["agent_card_url"] == CARD_URL
        assert record[KEYWORDS_PREDICATE] == [AGENT_KEYWORD, MOTHER_REGISTRY_KEYWORD]

    def test_payload_cannot_spoof_natural_key(self):
        record = build_agent_record({"name": "Echo", "agent_card_url": "https://evil.io"})
        assert "agent_card_url" not in record

    def test_natural_key_overrides_payload(self):
        record = build_agent_record({"name": "Echo", "agent_card_url": "https://evil.io"}, CARD_URL)
        assert record["agent_card_url"] == CARD_URL

    def test_empty_payload_rejected(self):
        with pytest.raises(InvalidPayloadError):
            build_agent_record({})
        with pytest.raises(InvalidPayloadError):
            build_agent_record({"nested": {}})


class TestProcess:
    @pytest.mark.asyncio
    async def test_new_agent_is_minted_and_synced(self, context, registry, minter):
        result = await process_agent_payload(context, CARD, CARD_URL)

        assert result.status is SyncStatus.CREATED
        assert result.nft_id == minter_id(1)
        assert result.mint_transaction is not None
        stored = registry.records[result.nft_id]
        assert stored["mint_transaction_hash"] == [result.mint_transaction]
        assert stored["agent_card_url"] == [CARD_URL]
        assert minter.labels == [CARD_URL]

    @pytest.mark.asyncio
    async def test_resubmission_reuses_identifier(self, context, minter):
        first = await process_agent_payload(context, CARD, CARD_URL)
        second = await process_agent_payload(context, CARD, CARD_URL)

        assert second.nft_id == first.nft_id
        assert second.status is SyncStatus.ALREADY_EXISTS
        assert second.mint_transaction is None
        assert len(minter.labels) == 1

    @pytest.mark.asyncio
    async def test_raw_payloads_always_mint(self, context, minter):
        first = await process_agent_payload(context, CARD)
        second = await process_agent_payload(context, CARD)
        assert first.nft_id != second.nft_id
        assert minter.labels == ["raw-json", "raw-json"]

    @pytest.mark.asyncio
    async def test_sync_failure_after_mint_is_logged(self, context, registry, caplog):
        registry.fail_with = RegistryError("nonce too low")
        with caplog.at_level(logging.ERROR, logger="mother_registry.pipeline"):
            with pytest.raises(SyncError):
                await process_agent_payload(context, CARD, CARD_URL)
        assert minter_id(1) in caplog.text

    def test_result_dict(self):
        from mother_registry.pipeline import ProcessResult

        result = ProcessResult("1:0x1:1", None, SyncStatus.ALREADY_EXISTS, "2026-01-01T00:00:00+00:00")
        assert result.to_dict() == {
            "nftId": "1:0x1:1",
            "mintTransaction": None,
            "status": "already_exists",
            "timestamp": "2026-01-01T00:00:00+00:00",
        }


def minter_id(n):
    return f"84532:0x{'1' * 40}:{n}"
