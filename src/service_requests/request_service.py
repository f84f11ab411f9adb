# This module persists service request operations on top of the pure lifecycle functions.
# Each operation reads the request and writes the derived copy conditioned on what was read.
# Booking outcomes are forwarded to the account service so mechanic statistics follow the lifecycle.
# Those follow-up account writes run after the request write and are not part of the same transaction.

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

from src.accounts.account_models import AccountKind, GeoPoint, Mechanic, utc_now
from src.accounts.account_rules import BookingOutcome
from src.accounts.account_service import AccountService
from src.common.documents import parse_document
from src.common.errors import NotFoundError, ValidationError
from src.locator.geo_distance import distance_km
from src.pricing.cost_estimator import adjust_breakdown, apply_discount, parts_total, reprice
from src.pricing.pricing_config import MarketplacePolicy
from src.service_requests import lifecycle
from src.service_requests.actors import Actor, CustomerActor, MechanicActor
from src.service_requests.request_models import (
    CancellationReason,
    FollowUp,
    MediaStage,
    MessageType,
    PartUsed,
    PaymentMethod,
    PaymentStatus,
    RatingRecord,
    RequestStatus,
    ServiceRequest,
    ServiceRequestDraft,
)
from src.service_requests.request_store import RequestStatistics, RequestStore

LOGGER = logging.getLogger("requests")


class RequestService:
    """Service request operations with versioned writes."""

    def __init__(
        self,
        *,
        store: RequestStore,
        accounts: AccountService,
        policy: MarketplacePolicy,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[datetime], str] = lifecycle.generate_request_id,
    ) -> None:
        self.store = store
        self.accounts = accounts
        self.policy = policy
        self.clock = clock
        self.id_factory = id_factory

    def create_request(self, customer_id: str, draft: Mapping[str, Any] | ServiceRequestDraft) -> ServiceRequest:
        customer = self.accounts.get_customer(customer_id)
        if not customer.is_active:
            raise NotFoundError(f"Customer {customer_id} not found.")
        if not isinstance(draft, ServiceRequestDraft):
            draft = parse_document(ServiceRequestDraft, draft)

        now = self.clock()
        request = lifecycle.new_request(
            request_id=self.id_factory(now),
            customer_id=customer.id,
            draft=draft,
            now=now,
        )
        request = request.model_copy(
            update={"pricing": request.pricing.model_copy(update={"currency": self.policy.currency})}
        )
        request = self.store.insert(request)
        self.accounts.record_customer_booking(customer.id)
        LOGGER.info(
            "request created id=%s customer=%s service=%s emergency=%s",
            request.request_id,
            customer.id,
            request.service_type.value,
            request.is_emergency,
        )
        return request

    def get_request(self, request_id: str) -> ServiceRequest:
        return self.store.get(request_id)

    def list_for_customer(self, customer_id: str) -> list[ServiceRequest]:
        return self.store.list_for_customer(customer_id)

    def list_for_mechanic(self, mechanic_id: str) -> list[ServiceRequest]:
        return self.store.list_for_mechanic(mechanic_id)

    # Status changes

    def transition(
        self,
        request_id: str,
        target: RequestStatus,
        *,
        actor: Actor,
        comment: str | None = None,
    ) -> ServiceRequest:
        request = self.store.get(request_id)
        if target is RequestStatus.ASSIGNED:
            raise ValidationError("Use assign_mechanic to assign a request.")
        updated = lifecycle.transition(request, target, actor=actor, now=self.clock(), comment=comment)
        saved = self._write(request, updated)
        self._after_transition(saved)
        return saved

    def assign_mechanic(
        self,
        request_id: str,
        mechanic_id: str,
        *,
        actor: Actor,
        comment: str | None = None,
    ) -> ServiceRequest:
        request = self.store.get(request_id)
        mechanic = self.accounts.get_mechanic(mechanic_id)
        if not (mechanic.is_active and mechanic.is_verified):
            raise ValidationError(f"Mechanic {mechanic_id} is not active and verified.")

        staged = request.model_copy(
            update={
                "mechanic_id": mechanic.id,
                "distance_km": distance_km(request.location.coordinates, mechanic.business_address.coordinates),
            }
        )
        updated = lifecycle.transition(staged, RequestStatus.ASSIGNED, actor=actor, now=self.clock(), comment=comment)
        saved = self._write(request, updated)
        self.accounts.record_booking_outcome(mechanic.id, BookingOutcome.ASSIGNED)
        LOGGER.info("request assigned id=%s mechanic=%s distance_km=%s", request_id, mechanic.id, saved.distance_km)
        return saved

    def cancel(
        self,
        request_id: str,
        *,
        actor: Actor,
        reason: CancellationReason,
        comment: str | None = None,
        refund_amount: float | None = None,
    ) -> ServiceRequest:
        request = self.store.get(request_id)
        updated = lifecycle.cancel(
            request,
            actor=actor,
            reason=reason,
            now=self.clock(),
            comment=comment,
            refund_amount=refund_amount,
        )
        saved = self._write(request, updated)
        self._after_transition(saved)
        return saved

    def _after_transition(self, request: ServiceRequest) -> None:
        if request.mechanic_id is None:
            return
        if request.status is RequestStatus.COMPLETED:
            self.accounts.record_booking_outcome(
                request.mechanic_id,
                BookingOutcome.COMPLETED,
                earnings=request.pricing.final_cost,
                response_time_minutes=request.time_tracking.response_time,
            )
            self.accounts.record_customer_spend(request.customer_id, request.pricing.final_cost)
        elif request.status in (RequestStatus.CANCELLED, RequestStatus.REJECTED):
            self.accounts.record_booking_outcome(request.mechanic_id, BookingOutcome.CANCELLED)

    # Messaging

    def add_message(
        self,
        request_id: str,
        *,
        sender: Actor,
        message: str,
        message_type: MessageType = MessageType.TEXT,
    ) -> ServiceRequest:
        request = self.store.get(request_id)
        updated = lifecycle.add_message(
            request,
            sender=sender,
            message=message,
            message_type=message_type,
            now=self.clock(),
        )
        return self._write(request, updated)

    def mark_messages_read(self, request_id: str, *, reader: Actor) -> ServiceRequest:
        request = self.store.get(request_id)
        updated, changed = lifecycle.mark_messages_read(request, reader=reader, now=self.clock())
        if changed == 0:
            return request
        return self._write(request, updated)

    # Pricing

    def estimate_for_request(self, request_id: str, mechanic_id: str | None = None) -> ServiceRequest:
        """Price the request with the given mechanic's rate card, or the assigned mechanic's."""

        request = self.store.get(request_id)
        chosen = mechanic_id or request.mechanic_id
        if chosen is None:
            raise ValidationError("A mechanic is required to estimate the cost.")
        mechanic: Mechanic = self.accounts.get_mechanic(chosen)

        distance = request.distance_km
        if mechanic_id is not None and mechanic_id != request.mechanic_id:
            distance = distance_km(request.location.coordinates, mechanic.business_address.coordinates)

        pricing = reprice(
            request.pricing,
            distance_km=distance,
            is_emergency=request.is_emergency,
            rate_card=mechanic.pricing,
            tax_rate=self.policy.tax_rate,
            currency=self.policy.currency,
        )
        updated = request.model_copy(update={"pricing": pricing, "updated_at": self.clock()})
        saved = self._write(request, updated)
        LOGGER.info(
            "request priced id=%s mechanic=%s estimated_cost=%s",
            request_id,
            mechanic.id,
            saved.pricing.estimated_cost,
        )
        return saved

    def adjust_pricing(self, request_id: str, **components: float) -> ServiceRequest:
        return self._update(
            request_id,
            lambda request: request.model_copy(update={"pricing": adjust_breakdown(request.pricing, **components)}),
        )

    def apply_discount(self, request_id: str, amount: float) -> ServiceRequest:
        return self._update(
            request_id,
            lambda request: request.model_copy(update={"pricing": apply_discount(request.pricing, amount)}),
        )

    def add_parts(self, request_id: str, parts: Iterable[Mapping[str, Any] | PartUsed]) -> ServiceRequest:
        new_parts = [part if isinstance(part, PartUsed) else parse_document(PartUsed, part) for part in parts]
        if not new_parts:
            raise ValidationError("At least one part is required.")

        def mutate(request: ServiceRequest) -> ServiceRequest:
            parts_used = [*request.parts_used, *new_parts]
            pricing = adjust_breakdown(request.pricing, parts_cost=parts_total(parts_used))
            return request.model_copy(update={"parts_used": parts_used, "pricing": pricing})

        return self._update(request_id, mutate)

    # Payment

    def record_payment(
        self,
        request_id: str,
        *,
        method: PaymentMethod,
        transaction_id: str | None = None,
    ) -> ServiceRequest:
        def mutate(request: ServiceRequest) -> ServiceRequest:
            if request.status in (RequestStatus.CANCELLED, RequestStatus.REJECTED):
                raise ValidationError(f"Request {request_id} is {request.status.value}; payment cannot be recorded.")
            if request.payment.status is PaymentStatus.COMPLETED:
                raise ValidationError(f"Request {request_id} is already paid.")
            payment = request.payment.model_copy(
                update={
                    "method": method,
                    "status": PaymentStatus.COMPLETED,
                    "amount": request.pricing.final_cost,
                    "transaction_id": transaction_id,
                    "paid_at": self.clock(),
                }
            )
            return request.model_copy(update={"payment": payment})

        saved = self._update(request_id, mutate)
        LOGGER.info("payment recorded id=%s method=%s amount=%s", request_id, method.value, saved.payment.amount)
        return saved

    def refund_payment(self, request_id: str, *, reason: str, amount: float | None = None) -> ServiceRequest:
        def mutate(request: ServiceRequest) -> ServiceRequest:
            if request.payment.status is not PaymentStatus.COMPLETED:
                raise ValidationError(f"Request {request_id} has no completed payment to refund.")
            paid = request.payment.amount or 0.0
            refund = paid if amount is None else amount
            if refund < 0 or refund > paid:
                raise ValidationError(f"Refund must be between 0 and {paid}")
            now = self.clock()
            updates: dict[str, Any] = {
                "payment": request.payment.model_copy(
                    update={"status": PaymentStatus.REFUNDED, "refunded_at": now, "refund_reason": reason}
                )
            }
            if request.cancellation is not None:
                updates["cancellation"] = request.cancellation.model_copy(
                    update={"refund_amount": refund, "refund_processed": True}
                )
            return request.model_copy(update=updates)

        saved = self._update(request_id, mutate)
        LOGGER.info("payment refunded id=%s", request_id)
        return saved

    # Ratings

    def rate_mechanic(
        self,
        request_id: str,
        *,
        customer: CustomerActor,
        rating: int,
        review: str | None = None,
    ) -> ServiceRequest:
        """Customer rates the mechanic who completed the request."""

        def mutate(request: ServiceRequest) -> ServiceRequest:
            self._require_rateable(request, rater_id=customer.id, owner_id=request.customer_id)
            if request.customer_rating is not None:
                raise ValidationError(f"Request {request_id} already has a customer rating.")
            record = parse_document(RatingRecord, {"rating": rating, "review": review, "rated_at": self.clock()})
            return request.model_copy(update={"customer_rating": record})

        saved = self._update(request_id, mutate)
        self.accounts.rate_account(AccountKind.MECHANIC, saved.mechanic_id, rating)
        return saved

    def rate_customer(
        self,
        request_id: str,
        *,
        mechanic: MechanicActor,
        rating: int,
        review: str | None = None,
    ) -> ServiceRequest:
        """Mechanic rates the customer they served."""

        def mutate(request: ServiceRequest) -> ServiceRequest:
            self._require_rateable(request, rater_id=mechanic.id, owner_id=request.mechanic_id)
            if request.mechanic_rating is not None:
                raise ValidationError(f"Request {request_id} already has a mechanic rating.")
            record = parse_document(RatingRecord, {"rating": rating, "review": review, "rated_at": self.clock()})
            return request.model_copy(update={"mechanic_rating": record})

        saved = self._update(request_id, mutate)
        self.accounts.rate_account(AccountKind.CUSTOMER, saved.customer_id, rating)
        return saved

    @staticmethod
    def _require_rateable(request: ServiceRequest, *, rater_id: str, owner_id: str | None) -> None:
        if request.status is not RequestStatus.COMPLETED:
            raise ValidationError(f"Request {request.request_id} can only be rated once completed.")
        if owner_id is None or rater_id != owner_id:
            raise ValidationError(f"Only participants of request {request.request_id} can rate it.")

    # Media and follow-up

    def attach_media(self, request_id: str, *, stage: MediaStage, urls: Iterable[str]) -> ServiceRequest:
        new_urls = [url.strip() for url in urls if url and url.strip()]
        if not new_urls:
            raise ValidationError("At least one media URL is required.")

        def mutate(request: ServiceRequest) -> ServiceRequest:
            field_name = stage.value
            images = request.images.model_copy(update={field_name: [*getattr(request.images, field_name), *new_urls]})
            return request.model_copy(update={"images": images})

        return self._update(request_id, mutate)

    def schedule_follow_up(self, request_id: str, *, scheduled_date: datetime, notes: str | None = None) -> ServiceRequest:
        def mutate(request: ServiceRequest) -> ServiceRequest:
            follow_up = FollowUp(required=True, scheduled_date=scheduled_date, notes=notes)
            return request.model_copy(update={"follow_up": follow_up})

        return self._update(request_id, mutate)

    def complete_follow_up(self, request_id: str, *, notes: str | None = None) -> ServiceRequest:
        def mutate(request: ServiceRequest) -> ServiceRequest:
            if not request.follow_up.required:
                raise ValidationError(f"Request {request_id} has no follow-up scheduled.")
            follow_up = request.follow_up.model_copy(
                update={"completed": True, "notes": notes if notes is not None else request.follow_up.notes}
            )
            return request.model_copy(update={"follow_up": follow_up})

        return self._update(request_id, mutate)

    # Queries

    def find_pending_near(self, point: GeoPoint, *, max_distance_m: float) -> list[tuple[ServiceRequest, float]]:
        return self.store.find_pending_near(point, max_distance_m=max_distance_m)

    def statistics(self, *, mechanic_id: str | None = None) -> RequestStatistics:
        return self.store.statistics(mechanic_id=mechanic_id)

    def is_overdue(self, request: ServiceRequest) -> bool:
        return lifecycle.is_overdue(request, self.clock())

    def _update(self, request_id: str, mutate: Callable[[ServiceRequest], ServiceRequest]) -> ServiceRequest:
        request = self.store.get(request_id)
        updated = mutate(request)
        return self._write(request, updated.model_copy(update={"updated_at": self.clock()}))

    def _write(self, read: ServiceRequest, updated: ServiceRequest) -> ServiceRequest:
        return self.store.save(updated, expected_version=read.version, expected_status=read.status)
