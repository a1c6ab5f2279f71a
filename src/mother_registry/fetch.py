"""
mother_registry.fetch: Retrieve agent card JSON from caller-supplied URLs.

Fetches are bounded by a timeout (504 when exceeded) and never retried.
Token URIs may also be ``ipfs://`` (served through a gateway) or inline
``data:application/json`` URIs.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any, Optional
from urllib.parse import unquote_to_bytes, urlparse

import httpx
from pydantic import AnyHttpUrl, TypeAdapter, ValidationError

from mother_registry.errors import (
    InvalidUpstreamContentError,
    InvalidUrlError,
    UpstreamFetchError,
    UpstreamTimeoutError,
)

logger = logging.getLogger(__name__)

_http_url = TypeAdapter(AnyHttpUrl)


def validate_http_url(candidate: str) -> str:
    """Return ``candidate`` unchanged if it is an absolute http(s) URL."""
    try:
        _http_url.validate_python(candidate)
    except ValidationError as exc:
        raise InvalidUrlError(f"Not a valid http(s) URL: {candidate}") from exc
    return candidate


def ipfs_to_gateway(uri: str, gateway: str) -> str:
    path = uri[len("ipfs://"):]
    if path.startswith("ipfs/"):
        path = path[len("ipfs/"):]
    return gateway.rstrip("/") + "/" + path


def decode_data_uri(uri: str) -> Any:
    """Decode a ``data:application/json[;base64],...`` URI into JSON."""
    header, sep, body = uri[len("data:"):].partition(",")
    if not sep:
        raise InvalidUrlError("Malformed data URI")
    params = [p.strip().lower() for p in header.split(";")]
    if params[0] and "json" not in params[0]:
        raise InvalidUpstreamContentError(f"Unsupported data URI media type: {params[0]}")
    try:
        raw = base64.b64decode(body, validate=True) if "base64" in params[1:] else unquote_to_bytes(body)
        return json.loads(raw)
    except (binascii.Error, ValueError) as exc:
        raise InvalidUpstreamContentError(f"Expected JSON in data URI but could not parse: {exc}") from exc


def _require_object(data: Any) -> dict:
    if not isinstance(data, dict):
        raise InvalidUpstreamContentError(
            "Fetched payload is not a JSON object", error="Unsupported upstream data",
        )
    return data


async def fetch_json(url: str, *, timeout: float = 15.0,
                     transport: Optional[httpx.AsyncBaseTransport] = None) -> dict:
    """GET ``url`` and return its JSON object body."""
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True,
                                     transport=transport) as client:
            response = await client.get(url, headers={"Accept": "application/json"})
    except httpx.InvalidURL as exc:
        raise InvalidUrlError(f"Not a valid http(s) URL: {url}") from exc
    except httpx.TimeoutException as exc:
        logger.warning("Upstream fetch timed out after %.1fs: %s", timeout, url)
        raise UpstreamTimeoutError(f"Timed out fetching {url} after {timeout:g}s") from exc
    except httpx.HTTPError as exc:
        logger.warning("Upstream fetch failed for %s: %s", url, exc)
        raise UpstreamFetchError(f"Failed to fetch {url}: {exc}") from exc

    if not response.is_success:
        raise UpstreamFetchError(
            f"Failed to fetch {url}: {response.status_code} {response.reason_phrase}"
        )

    try:
        data = response.json()
    except ValueError as exc:
        raise InvalidUpstreamContentError(
            f"Expected JSON from URL but could not parse: {exc}"
        ) from exc
    return _require_object(data)


async def load_token_uri(uri: str, *, timeout: float = 15.0,
                         ipfs_gateway: str = "https://ipfs.io/ipfs/",
                         transport: Optional[httpx.AsyncBaseTransport] = None) -> dict:
    """Load the JSON document a token URI points at."""
    try:
        scheme = urlparse(uri).scheme.lower()
    except ValueError as exc:
        raise InvalidUrlError(f"Malformed token URI: {uri}") from exc
    if scheme == "data":
        return _require_object(decode_data_uri(uri))
    if scheme == "ipfs":
        return await fetch_json(ipfs_to_gateway(uri, ipfs_gateway), timeout=timeout, transport=transport)
    if scheme in ("http", "https"):
        return await fetch_json(validate_http_url(uri), timeout=timeout, transport=transport)
    raise InvalidUrlError(f"Unsupported token URI scheme: {scheme or uri}")
