"""
mother_registry.registry: Boundary to the remote ledger registry.

The ledger SDK runs behind an HTTP gateway that exposes its ``sync``,
``search``, ``globalSearch`` and ``getAtomDetails`` calls. Everything above
this module depends on ``RegistryClient`` only; ``RegistryClient.upsert`` is
the one place where vendor error text is inspected.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx

from mother_registry.errors import RegistryError
from mother_registry.flatten import Record

logger = logging.getLogger(__name__)

# Substrings the ledger uses when an atom or triple is already on-chain.
ALREADY_EXISTS_MARKERS = (
    "multivault_atomexists",
    "atomexists",
    "multivault_tripleexists",
    "tripleexists",
)


def _message_of(error: Any) -> str:
    if error is None:
        return ""
    return str(getattr(error, "message", None) or error)


def is_already_exists_error(error: BaseException) -> bool:
    """True when the error (or its nested cause) says the data is already stored."""
    candidates = [
        _message_of(error),
        getattr(error, "cause_message", "") or "",
        _message_of(error.__cause__),
    ]
    for text in candidates:
        lowered = text.lower()
        if any(marker in lowered for marker in ALREADY_EXISTS_MARKERS):
            return True
    return False


class UpsertStatus(str, Enum):
    OK = "ok"
    ALREADY_EXISTS = "already_exists"
    FAILURE = "failure"


@dataclass
class UpsertOutcome:
    """Structured result of one upsert against the registry."""
    status: UpsertStatus
    detail: str = ""
    error: Optional[BaseException] = None


class RegistryClient(ABC):
    """Contract of the remote registry."""

    @abstractmethod
    async def sync(self, data: dict[str, Record]) -> Any:
        """Create whatever atoms/triples of ``{subject: record}`` are missing."""

    @abstractmethod
    async def search(self, criteria: list[dict[str, str]],
                     trusted_accounts: list[str]) -> dict[str, dict]:
        """Subjects matching every criterion, as ``{subject: {key: value}}``."""

    @abstractmethod
    async def global_search(self, query: str, *, atoms_limit: int = 1,
                            triples_limit: int = 0) -> dict:
        """Free-text lookup; returns ``{"atoms": [{"term_id": ...}, ...]}``."""

    @abstractmethod
    async def get_atom_details(self, term_id: str) -> Optional[dict]:
        """Atom detail with ``as_subject_triples``, or None when unknown."""

    async def close(self) -> None:
        return None

    async def upsert(self, data: dict[str, Record]) -> UpsertOutcome:
        """Run ``sync`` and classify the result instead of raising."""
        try:
            await self.sync(data)
        except Exception as exc:
            if is_already_exists_error(exc):
                return UpsertOutcome(UpsertStatus.ALREADY_EXISTS, detail=_message_of(exc), error=exc)
            return UpsertOutcome(UpsertStatus.FAILURE, detail=_message_of(exc), error=exc)
        return UpsertOutcome(UpsertStatus.OK)


class HttpRegistryClient(RegistryClient):
    """Registry client speaking JSON to the ledger gateway."""

    def __init__(self, base_url: str, *, api_key: Optional[str] = None,
                 timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        headers = {"Accept": "application/json", "User-Agent": "mother-registry/1.0"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Registry %s %s failed: %s", method, path, exc)
            raise RegistryError(f"Registry unreachable: {exc}") from exc

        if response.status_code >= 400 and response.status_code != 404:
            message, cause = _error_details(response)
            raise RegistryError(message, cause_message=cause, upstream_status=response.status_code)
        return response

    async def sync(self, data: dict[str, Record]) -> Any:
        response = await self._request("POST", "/sync", json={"data": data})
        return response.json() if response.content else None

    async def search(self, criteria: list[dict[str, str]],
                     trusted_accounts: list[str]) -> dict[str, dict]:
        response = await self._request(
            "POST", "/search",
            json={"criteria": criteria, "trustedAccounts": trusted_accounts},
        )
        payload = response.json()
        if not isinstance(payload, dict):
            raise RegistryError("Search returned unexpected payload")
        return payload

    async def global_search(self, query: str, *, atoms_limit: int = 1,
                            triples_limit: int = 0) -> dict:
        response = await self._request(
            "POST", "/global-search",
            json={"query": query, "atomsLimit": atoms_limit, "triplesLimit": triples_limit},
        )
        payload = response.json()
        return payload if isinstance(payload, dict) else {}

    async def get_atom_details(self, term_id: str) -> Optional[dict]:
        response = await self._request("GET", f"/atoms/{term_id}")
        if response.status_code == 404:
            return None
        payload = response.json()
        return payload if isinstance(payload, dict) else None


def _error_details(response: httpx.Response) -> tuple[str, str]:
    """Pull ``message`` and ``cause.message`` out of a gateway error body."""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {response.text[:500]}", ""

    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        body = body["error"]
    if not isinstance(body, dict):
        return f"HTTP {response.status_code}: {body}", ""

    message = str(body.get("message") or body.get("error") or f"HTTP {response.status_code}")
    cause = body.get("cause")
    cause_message = str(cause.get("message", "")) if isinstance(cause, dict) else str(cause or "")
    return message, cause_message
