"""mother_registry: Agent card normalization and idempotent sync to a ledger registry."""

from mother_registry.errors import ServiceError, SyncError, ConfigurationError, RegistryError
from mother_registry.flatten import flatten, normalize_values
from mother_registry.skills import collect_skill_tags
from mother_registry.identity import (
    IdentityMinter, IdentityResolver, Resolution,
    format_nft_identifier, parse_nft_identifier, is_nft_identifier, validate_nft_identifier,
)
from mother_registry.registry import RegistryClient, HttpRegistryClient, UpsertOutcome, UpsertStatus
from mother_registry.sync import SyncOrchestrator, SyncStatus
from mother_registry.mapping import FIELD_TABLE, FieldKind, map_atom_details

__all__ = [
    "ServiceError",
    "SyncError",
    "ConfigurationError",
    "RegistryError",
    "flatten",
    "normalize_values",
    "collect_skill_tags",
    "IdentityMinter",
    "IdentityResolver",
    "Resolution",
    "format_nft_identifier",
    "parse_nft_identifier",
    "is_nft_identifier",
    "validate_nft_identifier",
    "RegistryClient",
    "HttpRegistryClient",
    "UpsertOutcome",
    "UpsertStatus",
    "SyncOrchestrator",
    "SyncStatus",
    "FIELD_TABLE",
    "FieldKind",
    "map_atom_details",
]
