"""
mother_registry API: HTTP façade over the agent registry.

Public:
  GET  /                              - Service info
  GET  /health                        - Health check with signer account
API key (x-api-key):
  POST /agents                        - Sync caller-identified agent descriptors
  POST /agents/search                 - AND-search stored records
  POST /v1/intuition/events           - Webhook events
  POST /v1/mother                     - Raw JSON agent card, newly minted identity
  POST /v1/mother/agent               - Agent card fetched from a URL
  POST /v1/mother/erc8004             - Agent card behind an ERC-8004 token URI
  GET  /v1/mother/agents              - Registered agents (optional page/limit)
  GET  /v1/mother/agent/{nft_id}      - One agent, reverse mapped
"""

import json
import logging
import math
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request
from pydantic import BaseModel, Field

from mother_registry.config import (
    KEYWORDS_PREDICATE,
    MOTHER_REGISTRY_KEYWORD,
    RegistryContext,
    Settings,
)
from mother_registry.errors import (
    InvalidPayloadError,
    InvalidUrlError,
    NotFoundError,
    ServiceError,
    UnsupportedMediaTypeError,
)
from mother_registry.events import dispatch_event
from mother_registry.fetch import fetch_json, load_token_uri, validate_http_url
from mother_registry.flatten import normalize_values
from mother_registry.identity import validate_nft_identifier
from mother_registry.mapping import map_atom_details
from mother_registry.pipeline import process_agent_payload
from mother_registry.security import apply_security, limiter, require_api_key
from mother_registry.sync import SyncOrchestrator, SyncStatus

logger = logging.getLogger(__name__)

VERSION = "1.0.0"
DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------

class SearchRequest(BaseModel):
    """Body of POST /agents/search; criteria are ANDed."""
    criteria: list[dict[str, str]] = Field(..., min_length=1)
    trustedAccounts: Optional[list[str]] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def get_context(request: Request) -> RegistryContext:
    return request.app.state.context


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _mint_rate_limit() -> str:
    return Settings.from_env().mint_rate_limit


@contextmanager
def failure_category(error: str) -> Iterator[None]:
    """Report unexpected exceptions under ``error`` with their original message."""
    try:
        yield
    except ServiceError:
        raise
    except Exception as exc:
        logger.exception("%s", error)
        raise ServiceError(str(exc) or "Unknown error occurred", error=error) from exc


async def _read_uri_body(request: Request, keys: tuple[str, ...]) -> tuple[str, bool]:
    """Return ``(uri, from_raw_text)`` from a text/plain or JSON body."""
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    raw = await request.body()

    if content_type == "text/plain":
        return raw.decode("utf-8", errors="replace").strip(), True

    if content_type in ("", "application/json") or content_type.endswith("+json"):
        try:
            body = json.loads(raw) if raw else {}
        except ValueError as exc:
            raise InvalidPayloadError("Request body is not valid JSON") from exc
        if isinstance(body, dict):
            for key in keys:
                value = body.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip(), False
        raise InvalidPayloadError(
            f"Expected JSON body: {{ {keys[0]}: string }} or raw text/plain URL"
        )

    raise UnsupportedMediaTypeError(
        f"Unsupported content type '{content_type}'; send application/json or text/plain"
    )


def _page_param(raw: Optional[str], default: int) -> int:
    try:
        value = int(raw) if raw is not None else 0
    except ValueError:
        value = 0
    return value or default


def _validate_descriptor(subject: str, descriptor: Any) -> None:
    if not isinstance(descriptor, dict):
        raise InvalidPayloadError(f"Descriptor for '{subject}' must be an object")
    for required in ("type", "name"):
        value = descriptor.get(required)
        if not isinstance(value, str) or not value.strip():
            raise InvalidPayloadError(f"Descriptor for '{subject}' is missing '{required}'")
    for key, value in descriptor.items():
        nested = isinstance(value, dict) or (
            isinstance(value, list) and any(isinstance(v, (dict, list)) for v in value)
        )
        if nested:
            raise InvalidPayloadError(
                f"Field '{key}' of '{subject}' is nested; descriptors must be one level deep"
            )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

meta_router = APIRouter(tags=["meta"])
agents_router = APIRouter(prefix="/agents", tags=["agents"], dependencies=[Depends(require_api_key)])
events_router = APIRouter(prefix="/v1/intuition", tags=["events"], dependencies=[Depends(require_api_key)])
mother_router = APIRouter(prefix="/v1/mother", tags=["mother"], dependencies=[Depends(require_api_key)])


@meta_router.get("/")
async def root():
    return {
        "name": "Agent Registry API",
        "version": VERSION,
        "docs": "/docs",
    }


@meta_router.get("/health")
async def health(ctx: RegistryContext = Depends(get_context)):
    """Health check - always returns 200 if the service is up."""
    return {"status": "healthy", "timestamp": _now(), "account": ctx.account_address}


@agents_router.post("")
async def register_agents(payload: Any = Body(...), ctx: RegistryContext = Depends(get_context)):
    """Sync ``{subject: descriptor}``; descriptors need ``type`` and ``name``."""
    if not isinstance(payload, dict) or not payload:
        raise InvalidPayloadError("Expected a JSON object mapping subject ids to agent descriptors")
    for subject, descriptor in payload.items():
        _validate_descriptor(subject, descriptor)

    records = {subject: normalize_values(descriptor) for subject, descriptor in payload.items()}
    with failure_category("Sync failed"):
        status = await SyncOrchestrator(ctx.registry).sync_records(records)

    return {
        "success": True,
        "status": status.value,
        "message": "Agents synced" if status is SyncStatus.CREATED
        else "Agents already registered, nothing to do",
        "subjects": list(records),
        "timestamp": _now(),
    }


@agents_router.post("/search")
async def search_agents(body: SearchRequest, ctx: RegistryContext = Depends(get_context)):
    trusted = body.trustedAccounts if body.trustedAccounts is not None else ctx.trusted_accounts
    with failure_category("Search failed"):
        results = await ctx.registry.search(body.criteria, trusted)
    return {"success": True, "count": len(results), "results": results}


@events_router.post("/events")
async def receive_event(payload: Any = Body(None), ctx: RegistryContext = Depends(get_context)):
    logger.info("Webhook received", extra={"event_type": payload.get("type") if isinstance(payload, dict) else None})
    with failure_category("Webhook processing failed"):
        event_type, status = await dispatch_event(payload, SyncOrchestrator(ctx.registry))
    return {
        "success": True,
        "message": f"Event '{event_type}' received and processed",
        "status": status.value,
        "timestamp": _now(),
    }


@mother_router.post("")
@limiter.limit(_mint_rate_limit)
async def submit_raw_agent(request: Request, payload: Any = Body(None),
                           ctx: RegistryContext = Depends(get_context)):
    """Raw JSON agent card; there is no natural key, so an identity is always minted."""
    if not isinstance(payload, dict):
        raise InvalidPayloadError("Expected a JSON object with key/value pairs")
    with failure_category("Sync failed"):
        result = await process_agent_payload(ctx, payload)
    return {"success": True, "message": "Agent data received and synced", **result.to_dict()}


@mother_router.post("/agent")
@limiter.limit(_mint_rate_limit)
async def submit_agent_url(request: Request, ctx: RegistryContext = Depends(get_context)):
    """Body ``{url}`` or a raw text/plain URL; the URL is the agent's natural key."""
    url, from_text = await _read_uri_body(request, ("url",))
    try:
        validate_http_url(url)
    except InvalidUrlError as exc:
        if from_text:
            raise InvalidUrlError("When sending a raw string body, it must be a valid URL") from exc
        raise

    data = await fetch_json(url, timeout=ctx.settings.fetch_timeout)
    with failure_category("Sync failed"):
        result = await process_agent_payload(ctx, data, agent_card_url=url)
    return {"success": True, "message": "Agent data fetched and synced", **result.to_dict()}


@mother_router.post("/erc8004")
@limiter.limit(_mint_rate_limit)
async def submit_token_uri(request: Request, ctx: RegistryContext = Depends(get_context)):
    """Body ``{tokenUri}`` (or ``{url}``) or a raw token URI; http(s), ipfs and data URIs."""
    token_uri, _ = await _read_uri_body(request, ("tokenUri", "url"))
    data = await load_token_uri(
        token_uri,
        timeout=ctx.settings.fetch_timeout,
        ipfs_gateway=ctx.settings.ipfs_gateway_url,
    )
    with failure_category("Sync failed"):
        result = await process_agent_payload(ctx, data, agent_card_url=token_uri)
    return {"success": True, "message": "Agent registration fetched and synced", **result.to_dict()}


@mother_router.get("/agents")
async def list_agents(page: Optional[str] = Query(None), limit: Optional[str] = Query(None),
                      ctx: RegistryContext = Depends(get_context)):
    """Agents carrying the registry marker; paginated only when page or limit is given."""
    with failure_category("Failed to fetch agents"):
        result = await ctx.registry.search(
            [{KEYWORDS_PREDICATE: MOTHER_REGISTRY_KEYWORD}], ctx.trusted_accounts,
        )

    agents = [
        {"nftId": subject, **data}
        for subject, data in result.items()
        if validate_nft_identifier(subject)
    ]
    total = len(agents)

    if page is None and limit is None:
        return {"success": True, "count": total, "total": total, "agents": agents}

    page_no = max(1, _page_param(page, 1))
    page_size = max(1, min(MAX_PAGE_LIMIT, _page_param(limit, DEFAULT_PAGE_LIMIT)))
    offset = (page_no - 1) * page_size
    window = agents[offset:offset + page_size]
    return {
        "success": True,
        "count": len(window),
        "total": total,
        "page": page_no,
        "limit": page_size,
        "totalPages": math.ceil(total / page_size),
        "agents": window,
    }


@mother_router.get("/agent/{nft_id}")
async def get_agent(nft_id: str, ctx: RegistryContext = Depends(get_context)):
    with failure_category("Failed to fetch agent details"):
        found = await ctx.registry.global_search(nft_id, atoms_limit=1, triples_limit=0)
        atoms = found.get("atoms") or []
        if not atoms:
            raise NotFoundError(f"No atom found with subject: {nft_id}")

        term_id = atoms[0].get("term_id")
        if not term_id:
            raise NotFoundError(f"Atom for subject {nft_id} has no term_id")
        details = await ctx.registry.get_atom_details(term_id)
        if not details:
            raise NotFoundError(f"No atom details found for term_id: {term_id}")

    return {"success": True, "nftId": nft_id, "agent": map_atom_details(details)}


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(context: Optional[RegistryContext] = None, *,
               use_lifespan: bool = True) -> FastAPI:
    """Create the FastAPI app. Tests pass a context holding fakes."""
    if context is None:
        context = RegistryContext.from_settings(Settings.from_env())
    settings = context.settings
    logging.getLogger("mother_registry").setLevel(getattr(logging, settings.log_level, logging.INFO))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await context.registry.close()

    app = FastAPI(
        title="Agent Registry API",
        description="Normalizes agent cards and syncs them to the ledger registry.",
        version=VERSION,
        lifespan=lifespan if use_lifespan else None,
        docs_url=None if settings.production else "/docs",
        redoc_url=None if settings.production else "/redoc",
    )
    app.state.context = context
    apply_security(app, settings.allowed_origins)
    for router in (meta_router, agents_router, events_router, mother_router):
        app.include_router(router)
    return app
