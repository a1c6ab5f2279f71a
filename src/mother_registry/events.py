"""
mother_registry.events: Webhook events pushed by external integrations.

Each event type has a pydantic schema and a handler; the body is validated
against the schema for its ``type`` before anything is written.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Literal

from pydantic import BaseModel, StrictStr, ValidationError

from mother_registry.errors import InvalidEventError, UnknownEventTypeError
from mother_registry.sync import SyncOrchestrator, SyncStatus

logger = logging.getLogger(__name__)


class QuizMetadata(BaseModel):
    quizId: StrictStr
    completedAt: StrictStr


class QuizCompletedEvent(BaseModel):
    type: Literal["quiz_completed"]
    userAddress: StrictStr
    communityId: StrictStr
    metadata: QuizMetadata
    version: StrictStr


def user_did(address: str) -> str:
    return f"did:eth:{address.lower()}"


async def handle_quiz_completed(event: QuizCompletedEvent,
                                orchestrator: SyncOrchestrator) -> SyncStatus:
    did = user_did(event.userAddress)
    logger.info("Processing quiz_completed for %s (quiz %s)", did, event.metadata.quizId)
    record = {
        "type": "quiz_completion",
        "user_address": event.userAddress,
        "community_id": event.communityId,
        "quiz_id": event.metadata.quizId,
        "completed_at": event.metadata.completedAt,
        "event_version": event.version,
    }
    return await orchestrator.sync_record(did, record)


EventHandler = Callable[[Any, SyncOrchestrator], Awaitable[SyncStatus]]

EVENT_TYPES: dict[str, tuple[type[BaseModel], EventHandler]] = {
    "quiz_completed": (QuizCompletedEvent, handle_quiz_completed),
}


def validate_event(body: Any) -> BaseModel:
    """Parse ``body`` into the schema registered for its ``type``."""
    if not isinstance(body, dict):
        raise InvalidEventError("Event must be an object")
    event_type = body.get("type")
    if not event_type:
        raise InvalidEventError("Missing 'type' field")
    if not isinstance(event_type, str) or event_type not in EVENT_TYPES:
        raise UnknownEventTypeError(f'Event type "{event_type}" is not supported')

    schema, _ = EVENT_TYPES[event_type]
    try:
        return schema.model_validate(body)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise InvalidEventError(f"Invalid {event_type} event structure: {fields}") from exc


async def dispatch_event(body: Any, orchestrator: SyncOrchestrator) -> tuple[str, SyncStatus]:
    event = validate_event(body)
    event_type = body["type"]
    _, handler = EVENT_TYPES[event_type]
    return event_type, await handler(event, orchestrator)
