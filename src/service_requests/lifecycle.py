# This module is the service request state machine, written as pure functions over ServiceRequest.
# Each transition checks the edge and appends exactly one history entry stamped with its milestone time.
# Timestamps never move backwards: the supplied clock reading is clamped to the latest recorded one.
# Nothing here touches storage; request_service persists the returned copies with a version check.

from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime
from typing import Any

from src.common.errors import InvalidTransitionError, ValidationError
from src.pricing.cost_estimator import round_half_up
from src.service_requests.actors import Actor, CustomerActor, MechanicActor
from src.service_requests.request_models import (
    TERMINAL_STATUSES,
    Cancellation,
    CancellationReason,
    Message,
    MessageType,
    RequestStatus,
    ServiceRequest,
    ServiceRequestDraft,
    StatusHistoryEntry,
    TimeTracking,
    Urgency,
)

LOGGER = logging.getLogger("requests.lifecycle")

REQUEST_ID_PREFIX = "CR"
REQUEST_ID_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits

ALLOWED_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.ASSIGNED}),
    RequestStatus.ASSIGNED: frozenset({RequestStatus.ACCEPTED}),
    RequestStatus.ACCEPTED: frozenset({RequestStatus.ON_THE_WAY, RequestStatus.IN_PROGRESS}),
    RequestStatus.ON_THE_WAY: frozenset({RequestStatus.IN_PROGRESS}),
    RequestStatus.IN_PROGRESS: frozenset({RequestStatus.COMPLETED}),
}
# Any non-terminal state may also end early.
EARLY_EXITS: frozenset[RequestStatus] = frozenset({RequestStatus.CANCELLED, RequestStatus.REJECTED})


def generate_request_id(now: datetime) -> str:
    """`CR` + epoch milliseconds + four uppercase alphanumerics."""

    suffix = "".join(secrets.choice(REQUEST_ID_SUFFIX_ALPHABET) for _ in range(4))
    return f"{REQUEST_ID_PREFIX}{int(now.timestamp() * 1000)}{suffix}"


def new_request(*, request_id: str, customer_id: str, draft: ServiceRequestDraft, now: datetime) -> ServiceRequest:
    """Pending request with an empty history; creation is not a transition."""

    return ServiceRequest(
        request_id=request_id,
        customer_id=customer_id,
        vehicle=draft.vehicle,
        service_type=draft.service_type,
        problem_description=draft.problem_description,
        urgency=draft.urgency,
        location=draft.location,
        scheduled_for=draft.scheduled_for or now,
        preferred_time=draft.preferred_time,
        is_emergency=draft.is_emergency or draft.urgency is Urgency.EMERGENCY,
        special_instructions=draft.special_instructions,
        time_tracking=TimeTracking(requested_at=now),
        created_at=now,
        updated_at=now,
    )


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    if current in TERMINAL_STATUSES:
        return False
    return target in EARLY_EXITS or target in ALLOWED_TRANSITIONS.get(current, frozenset())


def minutes_between(start: datetime, end: datetime) -> int:
    return round_half_up((end - start).total_seconds() / 60.0)


def last_event_at(request: ServiceRequest) -> datetime:
    if request.status_history:
        return request.status_history[-1].timestamp
    return request.time_tracking.requested_at


def _track(tracking: TimeTracking, target: RequestStatus, at: datetime) -> TimeTracking:
    updates: dict[str, Any] = {}
    if target is RequestStatus.ASSIGNED:
        updates["assigned_at"] = at
    elif target is RequestStatus.ACCEPTED:
        updates["accepted_at"] = at
        if tracking.assigned_at is not None:
            updates["response_time"] = minutes_between(tracking.assigned_at, at)
    elif target is RequestStatus.IN_PROGRESS:
        updates["arrived_at"] = at
        updates["started_at"] = at
        if tracking.accepted_at is not None:
            updates["arrival_time"] = minutes_between(tracking.accepted_at, at)
    elif target is RequestStatus.COMPLETED:
        updates["completed_at"] = at
        if tracking.started_at is not None:
            updates["service_time"] = minutes_between(tracking.started_at, at)
    elif target is RequestStatus.CANCELLED:
        updates["cancelled_at"] = at
    return tracking.model_copy(update=updates)


def transition(
    request: ServiceRequest,
    target: RequestStatus,
    *,
    actor: Actor | None,
    now: datetime,
    comment: str | None = None,
) -> ServiceRequest:
    """Move `request` to `target`, recording exactly one history entry."""

    if isinstance(actor, (CustomerActor, MechanicActor)) and not _is_participant(request, actor):
        raise ValidationError(f"{actor.kind.title()} {actor.id} is not part of request {request.request_id}.")
    if request.status in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            f"Request {request.request_id} is {request.status.value} and accepts no further status changes.",
            details={"current": request.status.value, "requested": target.value},
        )
    if not can_transition(request.status, target):
        raise InvalidTransitionError(
            f"Cannot move request {request.request_id} from {request.status.value} to {target.value}.",
            details={"current": request.status.value, "requested": target.value},
        )

    at = max(now, last_event_at(request))
    entry = StatusHistoryEntry(status=target, timestamp=at, actor=actor, comment=comment)
    LOGGER.info("request %s %s -> %s", request.request_id, request.status.value, target.value)
    return request.model_copy(
        update={
            "status": target,
            "status_history": [*request.status_history, entry],
            "time_tracking": _track(request.time_tracking, target, at),
            "updated_at": at,
        }
    )


def cancel(
    request: ServiceRequest,
    *,
    actor: Actor,
    reason: CancellationReason,
    now: datetime,
    comment: str | None = None,
    refund_amount: float | None = None,
) -> ServiceRequest:
    cancelled = transition(request, RequestStatus.CANCELLED, actor=actor, now=now, comment=comment)
    record = Cancellation(
        cancelled_by=actor,
        reason=reason,
        comment=comment,
        cancelled_at=cancelled.time_tracking.cancelled_at,
        refund_amount=refund_amount,
    )
    return cancelled.model_copy(update={"cancellation": record})


def _is_participant(request: ServiceRequest, actor: CustomerActor | MechanicActor) -> bool:
    if isinstance(actor, CustomerActor):
        return actor.id == request.customer_id
    return request.mechanic_id is not None and actor.id == request.mechanic_id


def add_message(
    request: ServiceRequest,
    *,
    sender: Actor,
    message: str,
    now: datetime,
    message_type: MessageType = MessageType.TEXT,
) -> ServiceRequest:
    """Append an unread message stamped with the server time."""

    if not isinstance(sender, (CustomerActor, MechanicActor)):
        raise ValidationError("Only the customer or the mechanic can post messages.")
    if not _is_participant(request, sender):
        raise ValidationError(f"{sender.kind.title()} {sender.id} is not part of request {request.request_id}.")
    if not message or not message.strip():
        raise ValidationError("Message text is required.")

    entry = Message(sender=sender, message=message, message_type=message_type, timestamp=now)
    return request.model_copy(update={"messages": [*request.messages, entry], "updated_at": now})


def mark_messages_read(request: ServiceRequest, *, reader: Actor, now: datetime) -> tuple[ServiceRequest, int]:
    """Mark every message not sent by `reader` as read; returns the copy and how many changed."""

    changed = 0
    messages: list[Message] = []
    for entry in request.messages:
        sent_by_reader = entry.sender.kind == reader.kind and entry.sender.id == reader.id
        if not entry.is_read and not sent_by_reader:
            entry = entry.model_copy(update={"is_read": True})
            changed += 1
        messages.append(entry)
    if changed == 0:
        return request, 0
    return request.model_copy(update={"messages": messages, "updated_at": now}), changed


def unread_count(request: ServiceRequest, *, reader: Actor) -> int:
    return sum(
        1
        for entry in request.messages
        if not entry.is_read and not (entry.sender.kind == reader.kind and entry.sender.id == reader.id)
    )


def total_duration_minutes(request: ServiceRequest) -> int:
    tracking = request.time_tracking
    if tracking.started_at is None or tracking.completed_at is None:
        return 0
    return minutes_between(tracking.started_at, tracking.completed_at)


def is_overdue(request: ServiceRequest, now: datetime) -> bool:
    if request.status in TERMINAL_STATUSES:
        return False
    return now > request.scheduled_for
