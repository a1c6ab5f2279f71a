"""
mother_registry.config: Environment configuration and the per-app context.

Settings are read once at startup. API keys are re-read on every request so
keys can be rotated without restarting the process.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Mapping, Optional

if TYPE_CHECKING:  # pragma: no cover
    from mother_registry.identity import IdentityMinter
    from mother_registry.registry import RegistryClient

DEFAULT_CHAIN_ID = 84532  # Base Sepolia
DEFAULT_REGISTRY_API_URL = "http://localhost:8787"
DEFAULT_IPFS_GATEWAY = "https://ipfs.io/ipfs/"
DEFAULT_FETCH_TIMEOUT = 15.0

KEYWORDS_PREDICATE = "https://schema.org/keywords"
AGENT_KEYWORD = "ipfs://QmRp1abVgPBgN5dSVfRsSpUWa8gUz5PhmSJMCLCSqDpvSP"
MOTHER_REGISTRY_KEYWORD = "ipfs://bafkreifdd5zbyg2k26bqftkdyjox52m6yx5ncgapkbt6pu3qqcu5wsktky"


def _float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value else default
    except ValueError:
        return default


def _int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value else default
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    signer_key: Optional[str] = None
    identity_contract_address: Optional[str] = None
    rpc_url: Optional[str] = None
    chain_id: int = DEFAULT_CHAIN_ID
    mint_receipt_timeout: float = 120.0
    registry_api_url: str = DEFAULT_REGISTRY_API_URL
    registry_api_key: Optional[str] = None
    registry_timeout: float = 30.0
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    ipfs_gateway_url: str = DEFAULT_IPFS_GATEWAY
    mint_rate_limit: str = "30/minute"
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    production: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        origins = [o.strip() for o in env.get("ALLOWED_ORIGINS", "").split(",") if o.strip()]
        return cls(
            signer_key=env.get("SIGNER") or None,
            identity_contract_address=env.get("AGENT_IDENTITY_CONTRACT_ADDRESS") or None,
            rpc_url=env.get("BASE_SEPOLIA_RPC_URL") or None,
            chain_id=_int(env.get("IDENTITY_CHAIN_ID"), DEFAULT_CHAIN_ID),
            mint_receipt_timeout=_float(env.get("MINT_RECEIPT_TIMEOUT"), 120.0),
            registry_api_url=env.get("REGISTRY_API_URL", DEFAULT_REGISTRY_API_URL).rstrip("/"),
            registry_api_key=env.get("REGISTRY_API_KEY") or None,
            registry_timeout=_float(env.get("REGISTRY_TIMEOUT"), 30.0),
            fetch_timeout=_float(env.get("FETCH_TIMEOUT"), DEFAULT_FETCH_TIMEOUT),
            ipfs_gateway_url=env.get("IPFS_GATEWAY_URL", DEFAULT_IPFS_GATEWAY),
            mint_rate_limit=env.get("MINT_RATE_LIMIT", "30/minute"),
            allowed_origins=origins or ["*"],
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            production=bool(env.get("MOTHER_PRODUCTION")),
        )


def load_api_keys(environ: Optional[Mapping[str, str]] = None) -> list[str]:
    """Collect accepted API keys from API_KEY, API_KEY_1..n and API_KEYS.

    The numbered series stops at the first gap. Order is preserved and
    duplicates are dropped.
    """
    env = os.environ if environ is None else environ
    keys: list[str] = []

    if env.get("API_KEY"):
        keys.append(env["API_KEY"])

    index = 1
    while env.get(f"API_KEY_{index}"):
        keys.append(env[f"API_KEY_{index}"])
        index += 1

    if env.get("API_KEYS"):
        keys.extend(k.strip() for k in env["API_KEYS"].split(",") if k.strip())

    return list(dict.fromkeys(keys))


def signer_address(signer_key: Optional[str]) -> Optional[str]:
    """Checksummed address for the signing key, or None when unset or malformed."""
    if not signer_key:
        return None
    from eth_account import Account

    try:
        return Account.from_key(signer_key).address
    except (ValueError, TypeError):
        return None


@dataclass
class RegistryContext:
    """Collaborators shared by every request: settings, registry and minter."""
    settings: Settings
    registry: "RegistryClient"
    minter: "IdentityMinter"
    account_address: Optional[str] = None

    @property
    def trusted_accounts(self) -> list[str]:
        return [self.account_address] if self.account_address else []

    @classmethod
    def from_settings(cls, settings: Settings) -> "RegistryContext":
        from mother_registry.identity import IdentityMinter
        from mother_registry.registry import HttpRegistryClient

        return cls(
            settings=settings,
            registry=HttpRegistryClient(
                settings.registry_api_url,
                api_key=settings.registry_api_key,
                timeout=settings.registry_timeout,
            ),
            minter=IdentityMinter(settings),
            account_address=signer_address(settings.signer_key),
        )
