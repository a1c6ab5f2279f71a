"""Tests for NFT identifiers, receipt parsing, minting and identifier resolution."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from web3.exceptions import TimeExhausted

from mother_registry.config import Settings
from mother_registry.errors import ConfigurationError, RegistryError, SyncError
from mother_registry.identity import (
    RAW_JSON_LABEL,
    TRANSFER_TOPIC,
    IdentityMinter,
    IdentityResolver,
    format_nft_identifier,
    is_nft_identifier,
    parse_nft_identifier,
    validate_nft_identifier,
    extract_token_id_from_receipt,
)

CONTRACT = "0x" + "1" * 40
ZERO_TOPIC = "0x" + "0" * 64
OWNER_TOPIC = "0x" + "0" * 24 + "a" * 40


def _transfer_log(from_topic, token_id):
    return {"topics": [TRANSFER_TOPIC, from_topic, OWNER_TOPIC, "0x" + f"{token_id:064x}"]}


# ─── Identifiers ──────────────────────────────────────────────────

class TestIdentifiers:
    def test_format_and_parse(self):
        nft_id = format_nft_identifier(84532, CONTRACT, 7)
        assert nft_id == f"84532:{CONTRACT}:7"
        parsed = parse_nft_identifier(nft_id)
        assert parsed.chain_id == "84532"
        assert parsed.token_id == "7"
        assert str(parsed) == nft_id

    def test_shape_check(self):
        assert is_nft_identifier("a:b:c")
        assert not is_nft_identifier("did:eth:0xab:extra")
        assert not is_nft_identifier("plain")

    def test_validation(self):
        assert validate_nft_identifier(f"84532:{CONTRACT}:12")
        assert not validate_nft_identifier("84532:0xnothex:12")
        assert not validate_nft_identifier(f"84532:{CONTRACT}:twelve")
        assert not validate_nft_identifier("did:eth:0xabc")


# ─── Receipts ─────────────────────────────────────────────────────

class TestReceipt:
    def test_mint_log(self):
        receipt = {"logs": [_transfer_log(ZERO_TOPIC, 42)]}
        assert extract_token_id_from_receipt(receipt) == "42"

    def test_ordinary_transfer_ignored(self):
        receipt = {"logs": [_transfer_log(OWNER_TOPIC, 1), _transfer_log(ZERO_TOPIC, 2)]}
        assert extract_token_id_from_receipt(receipt) == "2"

    def test_bytes_topics(self):
        log = _transfer_log(ZERO_TOPIC, 5)
        log["topics"] = [bytes.fromhex(t[2:]) for t in log["topics"]]
        assert extract_token_id_from_receipt({"logs": [log]}) == "5"

    def test_no_mint(self):
        assert extract_token_id_from_receipt({"logs": []}) is None
        assert extract_token_id_from_receipt({"logs": [{"topics": [TRANSFER_TOPIC]}]}) is None


# ─── Minting ──────────────────────────────────────────────────────

def _configured(**overrides):
    values = dict(
        signer_key="0x" + "4" * 64,
        identity_contract_address=CONTRACT,
        rpc_url="https://sepolia.base.org",
    )
    values.update(overrides)
    return Settings(**values)


class TestMinterConfiguration:
    @pytest.mark.asyncio
    async def test_missing_contract(self):
        with pytest.raises(ConfigurationError, match="AGENT_IDENTITY_CONTRACT_ADDRESS"):
            await IdentityMinter(_configured(identity_contract_address=None)).mint("x")

    @pytest.mark.asyncio
    async def test_invalid_contract(self):
        with pytest.raises(ConfigurationError, match="Invalid contract address"):
            await IdentityMinter(_configured(identity_contract_address="0x123")).mint("x")

    @pytest.mark.asyncio
    async def test_missing_signer(self):
        with pytest.raises(ConfigurationError, match="SIGNER"):
            await IdentityMinter(_configured(signer_key=None)).mint("x")

    @pytest.mark.asyncio
    async def test_missing_rpc(self):
        with pytest.raises(ConfigurationError, match="BASE_SEPOLIA_RPC_URL"):
            await IdentityMinter(_configured(rpc_url=None)).mint("x")

    @pytest.mark.asyncio
    async def test_malformed_signer(self):
        with pytest.raises(ConfigurationError, match="valid hex private key"):
            await IdentityMinter(_configured(signer_key="not-a-key")).mint("x")


def _fake_chain(receipt=None, send_error=None):
    w3 = MagicMock()
    w3.eth.get_transaction_count = AsyncMock(return_value=3)
    w3.eth.send_raw_transaction = AsyncMock(
        return_value=bytes.fromhex("ab" * 32), side_effect=send_error,
    )
    w3.eth.wait_for_transaction_receipt = AsyncMock(return_value=receipt)
    register_call = MagicMock()
    register_call.build_transaction = AsyncMock(return_value={"nonce": 3, "chainId": 84532})
    w3.eth.contract.return_value.functions.register.return_value = register_call

    account = MagicMock(address="0x" + "a" * 40)
    account.sign_transaction.return_value = MagicMock(raw_transaction=b"\x02signed")
    return w3, account


class TestMint:
    @pytest.mark.asyncio
    async def test_mint_returns_identifier(self):
        receipt = {"status": 1, "blockNumber": 10, "logs": [_transfer_log(ZERO_TOPIC, 9)]}
        w3, account = _fake_chain(receipt)
        with patch("mother_registry.identity.AsyncWeb3", return_value=w3), \
             patch("mother_registry.identity.AsyncHTTPProvider"), \
             patch("mother_registry.identity.Account") as account_cls:
            account_cls.from_key.return_value = account
            result = await IdentityMinter(_configured()).mint("https://agent.example/card.json")

        assert result.nft_id == f"84532:{CONTRACT}:9"
        assert result.token_id == "9"
        assert result.transaction_hash == "0x" + "ab" * 32
        account.sign_transaction.assert_called_once_with({"nonce": 3, "chainId": 84532})
        w3.eth.send_raw_transaction.assert_awaited_once_with(b"\x02signed")

    @pytest.mark.asyncio
    async def test_reverted_receipt(self):
        w3, account = _fake_chain({"status": 0, "logs": []})
        with patch("mother_registry.identity.AsyncWeb3", return_value=w3), \
             patch("mother_registry.identity.AsyncHTTPProvider"), \
             patch("mother_registry.identity.Account") as account_cls:
            account_cls.from_key.return_value = account
            with pytest.raises(SyncError, match="reverted"):
                await IdentityMinter(_configured()).mint("x")

    @pytest.mark.asyncio
    async def test_receipt_without_mint_event(self):
        w3, account = _fake_chain({"status": 1, "logs": []})
        with patch("mother_registry.identity.AsyncWeb3", return_value=w3), \
             patch("mother_registry.identity.AsyncHTTPProvider"), \
             patch("mother_registry.identity.Account") as account_cls:
            account_cls.from_key.return_value = account
            with pytest.raises(SyncError, match="token ID"):
                await IdentityMinter(_configured()).mint("x")

    @pytest.mark.asyncio
    async def test_chain_errors_become_sync_error(self):
        w3, account = _fake_chain(send_error=TimeExhausted("no receipt"))
        with patch("mother_registry.identity.AsyncWeb3", return_value=w3), \
             patch("mother_registry.identity.AsyncHTTPProvider"), \
             patch("mother_registry.identity.Account") as account_cls:
            account_cls.from_key.return_value = account
            with pytest.raises(SyncError, match="Mint transaction failed"):
                await IdentityMinter(_configured()).mint("x")


# ─── Resolution ───────────────────────────────────────────────────

class TestResolver:
    @pytest.mark.asyncio
    async def test_existing_identifier_reused(self, registry, minter):
        existing = f"84532:{CONTRACT}:4"
        registry.records[existing] = {"agent_card_url": ["https://a.io/card.json"]}
        resolver = IdentityResolver(registry, minter, ["0xsigner"])

        resolution = await resolver.resolve("https://a.io/card.json")

        assert resolution.subject_id == existing
        assert resolution.minted is False
        assert resolution.mint_transaction is None
        assert minter.labels == []
        assert registry.search_calls == [([{"agent_card_url": "https://a.io/card.json"}], ["0xsigner"])]

    @pytest.mark.asyncio
    async def test_non_identifier_subjects_ignored(self, registry, minter):
        registry.records["did:eth:0xab"] = {"agent_card_url": ["https://a.io/card.json"]}
        resolution = await IdentityResolver(registry, minter, []).resolve("https://a.io/card.json")
        assert resolution.minted is True
        assert minter.labels == ["https://a.io/card.json"]

    @pytest.mark.asyncio
    async def test_no_natural_key_always_mints(self, registry, minter):
        resolution = await IdentityResolver(registry, minter, []).resolve()
        assert resolution.minted is True
        assert resolution.subject_id == f"84532:{CONTRACT}:1"
        assert resolution.mint_transaction.startswith("0x")
        assert minter.labels == [RAW_JSON_LABEL]
        assert registry.search_calls == []

    @pytest.mark.asyncio
    async def test_lookup_failure_does_not_mint(self, registry, minter):
        registry.search = AsyncMock(side_effect=RegistryError("Registry unreachable"))
        with pytest.raises(RegistryError):
            await IdentityResolver(registry, minter, []).resolve("https://a.io/card.json")
        assert minter.labels == []
