"""Global test configuration - runs before any test module imports."""
import os
from typing import Optional

import pytest

# Must be set BEFORE any mother_registry imports - slowapi reads this at init
os.environ["RATELIMIT_ENABLED"] = "False"
os.environ.setdefault("API_KEY", "test-api-key-global")

TEST_API_KEY = os.environ["API_KEY"]
AUTH_HEADERS = {"x-api-key": TEST_API_KEY}

CONTRACT = "0x" + "1" * 40
SIGNER_ADDRESS = "0x" + "a" * 40

from mother_registry.config import RegistryContext, Settings  # noqa: E402
from mother_registry.errors import RegistryError  # noqa: E402
from mother_registry.identity import MintResult, format_nft_identifier  # noqa: E402
from mother_registry.registry import RegistryClient  # noqa: E402


def pytest_configure(config):
    """Disable rate limiter after all imports."""
    try:
        from mother_registry.security import limiter
        limiter.enabled = False
    except ImportError:
        pass


class FakeRegistry(RegistryClient):
    """In-memory ledger. Re-syncing stored data fails the way the ledger does."""

    def __init__(self):
        self.records: dict[str, dict[str, list[str]]] = {}
        self.sync_calls: list[dict] = []
        self.search_calls: list[tuple] = []
        self.fail_with: Optional[Exception] = None

    async def sync(self, data):
        self.sync_calls.append(data)
        if self.fail_with is not None:
            raise self.fail_with

        created = False
        for subject, record in data.items():
            stored = self.records.setdefault(subject, {})
            for key, value in record.items():
                bucket = stored.setdefault(key, [])
                for item in value if isinstance(value, list) else [value]:
                    if item not in bucket:
                        bucket.append(item)
                        created = True
        if not created:
            raise RegistryError(
                "Transaction reverted", cause_message="MultiVault_AtomExists(bytes32 atomId)",
            )
        return {"ok": True}

    async def search(self, criteria, trusted_accounts):
        self.search_calls.append((criteria, trusted_accounts))
        results = {}
        for subject, stored in self.records.items():
            if all(v in stored.get(k, []) for c in criteria for k, v in c.items()):
                results[subject] = {
                    k: vals[0] if len(vals) == 1 else list(vals) for k, vals in stored.items()
                }
        return results

    async def global_search(self, query, *, atoms_limit=1, triples_limit=0):
        if query not in self.records:
            return {"atoms": []}
        return {"atoms": [{"term_id": f"term-{query}", "label": query}][:atoms_limit]}

    async def get_atom_details(self, term_id):
        subject = term_id[len("term-"):]
        if subject not in self.records:
            return None
        triples = [
            {"predicate": {"data": key, "label": key}, "object": {"data": value, "label": None}}
            for key, values in self.records[subject].items()
            for value in values
        ]
        return {"term_id": term_id, "label": subject, "as_subject_triples": triples}


class FakeMinter:
    """Mints sequential token ids without touching a chain."""

    def __init__(self):
        self.labels: list[str] = []

    async def mint(self, label):
        self.labels.append(label)
        token_id = str(len(self.labels))
        return MintResult(
            chain_id="84532",
            contract_address=CONTRACT,
            token_id=token_id,
            nft_id=format_nft_identifier(84532, CONTRACT, token_id),
            transaction_hash="0x" + f"{len(self.labels):064x}",
        )


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def minter():
    return FakeMinter()


@pytest.fixture
def context(registry, minter):
    return RegistryContext(
        settings=Settings(), registry=registry, minter=minter, account_address=SIGNER_ADDRESS,
    )


@pytest.fixture
def app(context):
    from mother_registry.api import create_app

    return create_app(context, use_lifespan=False)


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    return TestClient(app)


@pytest.fixture
def auth_headers():
    return dict(AUTH_HEADERS)
