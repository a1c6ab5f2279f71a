"""
mother_registry.identity: Subject identifiers backed by an identity NFT.

A subject is either caller supplied or minted on the identity contract, in
which case it reads ``chainId:contractAddress:tokenId``. For a given natural
key (the agent card URL) the resolver looks for an existing identifier before
minting, so repeated submissions never mint twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import Web3Exception

from mother_registry.config import Settings
from mother_registry.errors import ConfigurationError, SyncError
from mother_registry.registry import RegistryClient

logger = logging.getLogger(__name__)

AGENT_IDENTITY_ABI = [
    {
        "type": "function",
        "name": "register",
        "inputs": [],
        "outputs": [{"name": "agentId", "type": "uint256"}],
        "stateMutability": "nonpayable",
    },
]

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

NATURAL_KEY_FIELD = "agent_card_url"
RAW_JSON_LABEL = "raw-json"


# ─── Composite identifiers ────────────────────────────────────────

@dataclass(frozen=True)
class NftIdentifier:
    chain_id: str
    contract_address: str
    token_id: str

    def __str__(self) -> str:
        return format_nft_identifier(self.chain_id, self.contract_address, self.token_id)


def format_nft_identifier(chain_id: int | str, contract_address: str, token_id: int | str) -> str:
    return f"{chain_id}:{contract_address}:{token_id}"


def parse_nft_identifier(nft_id: str) -> Optional[NftIdentifier]:
    parts = nft_id.split(":")
    if len(parts) != 3:
        return None
    return NftIdentifier(*parts)


def is_nft_identifier(value: str) -> bool:
    """Shape check only: three colon-separated parts."""
    return parse_nft_identifier(value) is not None


def validate_nft_identifier(nft_id: str) -> bool:
    """Shape check plus a valid contract address and a numeric token id."""
    parsed = parse_nft_identifier(nft_id)
    if parsed is None:
        return False
    if not Web3.is_address(parsed.contract_address):
        return False
    return parsed.token_id.isdigit()


# ─── Receipt parsing ──────────────────────────────────────────────

def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value).lower()
    return text if text.startswith("0x") else "0x" + text


def extract_token_id_from_receipt(receipt: Mapping[str, Any]) -> Optional[str]:
    """Token id of the ERC-721 mint (Transfer from the zero address) in a receipt."""
    for log in receipt.get("logs") or []:
        topics = [_hex(t) for t in log.get("topics") or []]
        if len(topics) != 4 or topics[0] != TRANSFER_TOPIC:
            continue
        if int(topics[1][-40:], 16) == 0:
            return str(int(topics[3], 16))
    return None


# ─── Minting ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class MintResult:
    chain_id: str
    contract_address: str
    token_id: str
    nft_id: str
    transaction_hash: str


class IdentityMinter:
    """Mints identity NFTs by calling ``register()`` on the identity contract."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def _require_config(self) -> tuple[str, str, str]:
        contract_address = self.settings.identity_contract_address
        if not contract_address:
            raise ConfigurationError("AGENT_IDENTITY_CONTRACT_ADDRESS not set in environment variables")
        if not Web3.is_address(contract_address):
            raise ConfigurationError(f"Invalid contract address: {contract_address}")
        if not self.settings.signer_key:
            raise ConfigurationError("SIGNER not set in environment variables")
        if not self.settings.rpc_url:
            raise ConfigurationError("BASE_SEPOLIA_RPC_URL not set in environment variables")
        return contract_address, self.settings.signer_key, self.settings.rpc_url

    async def mint(self, label: str) -> MintResult:
        """Submit ``register()``, wait for the receipt and return the new identifier."""
        contract_address, signer_key, rpc_url = self._require_config()
        try:
            account = Account.from_key(signer_key)
        except (ValueError, TypeError) as exc:
            raise ConfigurationError("SIGNER must be a valid hex private key") from exc

        w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        contract = w3.eth.contract(
            address=Web3.to_checksum_address(contract_address), abi=AGENT_IDENTITY_ABI,
        )
        logger.info("Minting identity for %s on contract %s", label, contract_address)

        try:
            nonce = await w3.eth.get_transaction_count(account.address, "pending")
            tx = await contract.functions.register().build_transaction({
                "from": account.address,
                "nonce": nonce,
                "chainId": self.settings.chain_id,
            })
            signed = account.sign_transaction(tx)
            tx_hash = Web3.to_hex(await w3.eth.send_raw_transaction(signed.raw_transaction))
            logger.info("Mint transaction submitted: %s", tx_hash)
            receipt = await w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.settings.mint_receipt_timeout,
            )
        except (Web3Exception, ValueError) as exc:
            raise SyncError(f"Mint transaction failed: {exc}") from exc

        if receipt.get("status") == 0:
            raise SyncError(f"Mint transaction reverted: {tx_hash}")
        logger.info("Mint confirmed in block %s", receipt.get("blockNumber"))

        token_id = extract_token_id_from_receipt(receipt)
        if token_id is None:
            raise SyncError("Failed to extract token ID from transaction receipt")

        chain_id = str(self.settings.chain_id)
        nft_id = format_nft_identifier(chain_id, contract_address, token_id)
        logger.info("Identity minted: %s", nft_id)
        return MintResult(chain_id, contract_address, token_id, nft_id, tx_hash)


# ─── Resolution ───────────────────────────────────────────────────

@dataclass(frozen=True)
class Resolution:
    subject_id: str
    minted: bool
    mint_transaction: Optional[str] = None


class IdentityResolver:
    """Reuse the identifier stored for a natural key, or mint a new one."""

    def __init__(self, registry: RegistryClient, minter: IdentityMinter,
                 trusted_accounts: list[str], natural_key_field: str = NATURAL_KEY_FIELD):
        self.registry = registry
        self.minter = minter
        self.trusted_accounts = trusted_accounts
        self.natural_key_field = natural_key_field

    async def find_existing(self, natural_key: str) -> Optional[str]:
        """First stored subject for ``natural_key`` that is a valid identifier.

        Lookup errors propagate: minting while the registry cannot be read
        would break the one-identifier-per-key guarantee.
        """
        matches = await self.registry.search(
            [{self.natural_key_field: natural_key}], self.trusted_accounts,
        )
        for subject in matches:
            if validate_nft_identifier(subject):
                return subject
            logger.debug("Ignoring non-identifier subject %s for %s", subject, natural_key)
        return None

    async def resolve(self, natural_key: Optional[str] = None) -> Resolution:
        if natural_key:
            existing = await self.find_existing(natural_key)
            if existing:
                logger.info("Identifier already exists for %s: %s", natural_key, existing)
                return Resolution(existing, minted=False)

        result = await self.minter.mint(natural_key or RAW_JSON_LABEL)
        return Resolution(result.nft_id, minted=True, mint_transaction=result.transaction_hash)
