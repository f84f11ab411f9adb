# This test file validates persisted request operations end to end on in-memory SQLite.
# It follows a request from creation through assignment and completion, then the operations around it.
# Account statistics are checked after each lifecycle hook because those writes follow the request write.

from __future__ import annotations

import re
from datetime import timedelta

import pytest

from src.accounts.account_models import AccountKind, Customer, GeoPoint, Mechanic
from src.accounts.account_service import AccountService
from src.common.errors import ConcurrentUpdateError, InvalidTransitionError, NotFoundError, ValidationError
from src.service_requests import lifecycle
from src.service_requests.actors import AdminActor, CustomerActor, MechanicActor
from src.service_requests.request_models import (
    CancellationReason,
    MediaStage,
    PaymentMethod,
    PaymentStatus,
    RequestStatus,
    ServiceRequest,
)
from src.service_requests.request_service import RequestService
from src.service_requests.request_store import RequestStore
from tests.support import (
    CITY_LATITUDE,
    CITY_LONGITUDE,
    TEST_PASSWORD,
    FakeClock,
    approved_mechanic,
    customer_profile,
    request_draft,
)

ADMIN = AdminActor(id="admin-1")
CITY_CENTRE = GeoPoint(longitude=CITY_LONGITUDE, latitude=CITY_LATITUDE)


@pytest.fixture
def customer(account_service: AccountService) -> Customer:
    return account_service.register_customer(customer_profile(), TEST_PASSWORD)


@pytest.fixture
def mechanic(account_service: AccountService) -> Mechanic:
    return approved_mechanic(account_service)


def _assigned(request_service: RequestService, customer: Customer, mechanic: Mechanic, **draft: object) -> ServiceRequest:
    request = request_service.create_request(customer.id, request_draft(**draft))
    return request_service.assign_mechanic(request.request_id, mechanic.id, actor=ADMIN)


def _complete(request_service: RequestService, request: ServiceRequest, mechanic: Mechanic, clock: FakeClock) -> ServiceRequest:
    actor = MechanicActor(id=mechanic.id)
    clock.advance(minutes=3)
    request_service.transition(request.request_id, RequestStatus.ACCEPTED, actor=actor)
    clock.advance(minutes=12)
    request_service.transition(request.request_id, RequestStatus.ON_THE_WAY, actor=actor)
    clock.advance(minutes=8)
    request_service.transition(request.request_id, RequestStatus.IN_PROGRESS, actor=actor)
    clock.advance(minutes=45)
    return request_service.transition(request.request_id, RequestStatus.COMPLETED, actor=actor)


def test_create_request_starts_pending_and_counts_customer_booking(
    request_service: RequestService, account_service: AccountService, customer: Customer, clock: FakeClock
) -> None:
    request = request_service.create_request(customer.id, request_draft())

    assert re.fullmatch(r"CR\d+[A-Z0-9]{4}", request.request_id)
    assert request.status is RequestStatus.PENDING
    assert request.status_history == []
    assert request.version == 1
    assert request.vehicle.registration_number == "TS09AB1234"
    assert request.time_tracking.requested_at == clock.now
    assert request.scheduled_for == clock.now
    assert account_service.get_customer(customer.id).total_bookings == 1
    assert [item.request_id for item in request_service.list_for_customer(customer.id)] == [request.request_id]


def test_create_request_rejects_invalid_drafts_and_inactive_customers(
    request_service: RequestService, account_service: AccountService, customer: Customer
) -> None:
    with pytest.raises(ValidationError):
        request_service.create_request(customer.id, request_draft(problemDescription="x" * 501))
    with pytest.raises(ValidationError):
        request_service.create_request(customer.id, request_draft(serviceType="car_wash"))

    account_service.deactivate(AccountKind.CUSTOMER, customer.id)
    with pytest.raises(NotFoundError):
        request_service.create_request(customer.id, request_draft())


def test_emergency_urgency_marks_request_as_emergency(request_service: RequestService, customer: Customer) -> None:
    request = request_service.create_request(customer.id, request_draft(urgency="emergency"))
    assert request.is_emergency is True


def test_assignment_records_distance_and_mechanic_booking(
    request_service: RequestService, account_service: AccountService, customer: Customer
) -> None:
    mechanic = approved_mechanic(account_service, latitude_offset=0.01)
    request = _assigned(request_service, customer, mechanic)

    assert request.status is RequestStatus.ASSIGNED
    assert request.mechanic_id == mechanic.id
    assert request.distance_km == pytest.approx(1.11, abs=0.01)
    assert request.status_history[-1].actor == ADMIN
    assert request.version == 2
    assert account_service.get_mechanic(mechanic.id).statistics.total_bookings == 1
    assert [item.request_id for item in request_service.list_for_mechanic(mechanic.id)] == [request.request_id]


def test_unverified_mechanic_cannot_be_assigned(
    request_service: RequestService, account_service: AccountService, customer: Customer
) -> None:
    pending = account_service.register_mechanic(
        {
            "name": "New Garage",
            "email": "new@example.com",
            "phone": "9000011111",
            "experience": 1,
            "specializations": ["oil_change"],
            "vehicleTypes": ["car"],
            "businessAddress": {
                "addressLine1": "Road 2",
                "city": "Hyderabad",
                "pincode": "500002",
                "coordinates": {"longitude": CITY_LONGITUDE, "latitude": CITY_LATITUDE},
            },
        },
        TEST_PASSWORD,
    )
    request = request_service.create_request(customer.id, request_draft())
    with pytest.raises(ValidationError):
        request_service.assign_mechanic(request.request_id, pending.id, actor=ADMIN)
    assert request_service.get_request(request.request_id).status is RequestStatus.PENDING


def test_assignment_goes_through_assign_mechanic_only(
    request_service: RequestService, customer: Customer
) -> None:
    request = request_service.create_request(customer.id, request_draft())
    with pytest.raises(ValidationError):
        request_service.transition(request.request_id, RequestStatus.ASSIGNED, actor=ADMIN)
    with pytest.raises(InvalidTransitionError):
        request_service.transition(request.request_id, RequestStatus.ACCEPTED, actor=ADMIN)


def test_timed_lifecycle_updates_durations_and_statistics(
    request_service: RequestService,
    account_service: AccountService,
    customer: Customer,
    mechanic: Mechanic,
    clock: FakeClock,
) -> None:
    request = _assigned(request_service, customer, mechanic)
    request_service.estimate_for_request(request.request_id)
    completed = _complete(request_service, request, mechanic, clock)

    tracking = completed.time_tracking
    assert tracking.response_time == 3
    assert tracking.arrival_time == 20
    assert tracking.service_time == 45
    assert lifecycle.total_duration_minutes(completed) == 45
    assert [entry.status for entry in completed.status_history] == [
        RequestStatus.ASSIGNED,
        RequestStatus.ACCEPTED,
        RequestStatus.ON_THE_WAY,
        RequestStatus.IN_PROGRESS,
        RequestStatus.COMPLETED,
    ]
    assert completed.pricing.final_cost == 118

    statistics = account_service.get_mechanic(mechanic.id).statistics
    assert statistics.total_bookings == 1
    assert statistics.completed_bookings == 1
    assert statistics.completion_rate == 100
    assert statistics.total_earnings == 118
    assert statistics.average_response_time == 3
    assert account_service.get_customer(customer.id).total_spent == 118

    with pytest.raises(InvalidTransitionError):
        request_service.cancel(
            request.request_id,
            actor=CustomerActor(id=customer.id),
            reason=CancellationReason.CUSTOMER_REQUESTED,
        )


def test_cancellation_records_reason_and_mechanic_cancelled_booking(
    request_service: RequestService,
    account_service: AccountService,
    customer: Customer,
    mechanic: Mechanic,
) -> None:
    request = _assigned(request_service, customer, mechanic)
    cancelled = request_service.cancel(
        request.request_id,
        actor=CustomerActor(id=customer.id),
        reason=CancellationReason.VEHICLE_MOVED,
        comment="Towed to a garage",
    )

    assert cancelled.status is RequestStatus.CANCELLED
    assert cancelled.cancellation.reason is CancellationReason.VEHICLE_MOVED
    assert cancelled.cancellation.cancelled_by == CustomerActor(id=customer.id)
    assert cancelled.time_tracking.cancelled_at is not None
    assert account_service.get_mechanic(mechanic.id).statistics.cancelled_bookings == 1

    with pytest.raises(ValidationError):
        request_service.record_payment(request.request_id, method=PaymentMethod.CASH)


def test_stale_version_write_is_rejected(
    request_service: RequestService, request_store: RequestStore, customer: Customer, mechanic: Mechanic
) -> None:
    stale = request_service.create_request(customer.id, request_draft())
    request_service.assign_mechanic(stale.request_id, mechanic.id, actor=ADMIN)

    with pytest.raises(ConcurrentUpdateError) as exc_info:
        request_store.save(stale, expected_version=stale.version, expected_status=stale.status)
    assert exc_info.value.details["current_version"] == 2

    stored = request_service.get_request(stale.request_id)
    assert stored.status is RequestStatus.ASSIGNED
    missing = stale.model_copy(update={"request_id": "CR0MISSING"})
    with pytest.raises(NotFoundError):
        request_store.save(missing, expected_version=1, expected_status=RequestStatus.PENDING)


def test_estimate_uses_mechanic_rate_card_and_emergency_multiplier(
    request_service: RequestService, customer: Customer, mechanic: Mechanic
) -> None:
    request = request_service.create_request(customer.id, request_draft(urgency="emergency"))
    with pytest.raises(ValidationError):
        request_service.estimate_for_request(request.request_id)

    priced = request_service.estimate_for_request(request.request_id, mechanic.id)
    breakdown = priced.pricing.breakdown
    assert breakdown.service_fee == 100
    assert breakdown.travel_fee == 0
    assert breakdown.emergency_charge == 50
    assert breakdown.tax == 27
    assert priced.pricing.estimated_cost == 177
    assert priced.pricing.final_cost == 177
    assert priced.pricing.currency == "INR"


def test_post_service_items_keep_final_cost_consistent(
    request_service: RequestService, customer: Customer, mechanic: Mechanic
) -> None:
    request = _assigned(request_service, customer, mechanic, urgency="emergency")
    request_service.estimate_for_request(request.request_id)

    with_parts = request_service.add_parts(
        request.request_id,
        [{"name": "Oil filter", "quantity": 2, "unitPrice": 150, "totalPrice": 300}],
    )
    assert with_parts.pricing.breakdown.parts_cost == 300
    assert with_parts.pricing.final_cost == 477

    discounted = request_service.apply_discount(request.request_id, 27)
    assert discounted.pricing.final_cost == 450

    adjusted = request_service.adjust_pricing(request.request_id, labor_cost=150)
    assert adjusted.pricing.final_cost == 600
    assert adjusted.pricing.estimated_cost == 177

    repriced = request_service.estimate_for_request(request.request_id)
    assert repriced.pricing.final_cost == 600

    with pytest.raises(ValidationError):
        request_service.add_parts(request.request_id, [])
    with pytest.raises(ValidationError):
        request_service.apply_discount(request.request_id, 10_000)


def test_messages_are_limited_to_participants_and_mark_read(
    request_service: RequestService, customer: Customer, mechanic: Mechanic
) -> None:
    request = _assigned(request_service, customer, mechanic)
    customer_actor = CustomerActor(id=customer.id)
    mechanic_actor = MechanicActor(id=mechanic.id)

    request_service.add_message(request.request_id, sender=customer_actor, message="Where are you?")
    updated = request_service.add_message(request.request_id, sender=mechanic_actor, message="Five minutes away.")
    assert len(updated.messages) == 2
    assert lifecycle.unread_count(updated, reader=customer_actor) == 1

    with pytest.raises(ValidationError):
        request_service.add_message(request.request_id, sender=ADMIN, message="Hello")
    with pytest.raises(ValidationError):
        request_service.add_message(request.request_id, sender=CustomerActor(id="stranger"), message="Hi")
    with pytest.raises(ValidationError):
        request_service.add_message(request.request_id, sender=customer_actor, message="   ")

    read = request_service.mark_messages_read(request.request_id, reader=customer_actor)
    assert [message.is_read for message in read.messages] == [False, True]
    assert lifecycle.unread_count(read, reader=customer_actor) == 0
    assert lifecycle.unread_count(read, reader=mechanic_actor) == 1

    unchanged = request_service.mark_messages_read(request.request_id, reader=customer_actor)
    assert unchanged.version == read.version


def test_ratings_require_completion_and_are_recorded_once(
    request_service: RequestService,
    account_service: AccountService,
    customer: Customer,
    mechanic: Mechanic,
    clock: FakeClock,
) -> None:
    request = _assigned(request_service, customer, mechanic)
    customer_actor = CustomerActor(id=customer.id)
    with pytest.raises(ValidationError):
        request_service.rate_mechanic(request.request_id, customer=customer_actor, rating=5)

    _complete(request_service, request, mechanic, clock)
    with pytest.raises(ValidationError):
        request_service.rate_mechanic(request.request_id, customer=CustomerActor(id="stranger"), rating=5)

    rated = request_service.rate_mechanic(request.request_id, customer=customer_actor, rating=5, review="Quick fix")
    assert rated.customer_rating.rating == 5
    assert rated.customer_rating.review == "Quick fix"
    assert account_service.get_mechanic(mechanic.id).rating.average == 5
    with pytest.raises(ValidationError):
        request_service.rate_mechanic(request.request_id, customer=customer_actor, rating=4)

    request_service.rate_customer(request.request_id, mechanic=MechanicActor(id=mechanic.id), rating=4)
    assert account_service.get_customer(customer.id).rating.average == 4
    with pytest.raises(ValidationError):
        request_service.rate_customer(request.request_id, mechanic=MechanicActor(id=mechanic.id), rating=6)


def test_payment_and_refund(
    request_service: RequestService, customer: Customer, mechanic: Mechanic, clock: FakeClock
) -> None:
    request = _assigned(request_service, customer, mechanic)
    request_service.estimate_for_request(request.request_id)
    _complete(request_service, request, mechanic, clock)

    with pytest.raises(ValidationError):
        request_service.refund_payment(request.request_id, reason="duplicate")

    paid = request_service.record_payment(request.request_id, method=PaymentMethod.UPI, transaction_id="UPI-77")
    assert paid.payment.status is PaymentStatus.COMPLETED
    assert paid.payment.amount == 118
    assert paid.payment.paid_at == clock.now
    with pytest.raises(ValidationError):
        request_service.record_payment(request.request_id, method=PaymentMethod.CASH)

    with pytest.raises(ValidationError):
        request_service.refund_payment(request.request_id, reason="overcharged", amount=500)
    refunded = request_service.refund_payment(request.request_id, reason="overcharged")
    assert refunded.payment.status is PaymentStatus.REFUNDED
    assert refunded.payment.refund_reason == "overcharged"


def test_media_and_follow_up(request_service: RequestService, customer: Customer, clock: FakeClock) -> None:
    request = request_service.create_request(customer.id, request_draft())

    with_media = request_service.attach_media(
        request.request_id,
        stage=MediaStage.BEFORE_SERVICE,
        urls=["https://cdn.example.com/a.jpg", " "],
    )
    assert with_media.images.before_service == ["https://cdn.example.com/a.jpg"]
    with pytest.raises(ValidationError):
        request_service.attach_media(request.request_id, stage=MediaStage.DOCUMENTS, urls=[""])

    with pytest.raises(ValidationError):
        request_service.complete_follow_up(request.request_id)
    next_week = clock.now + timedelta(days=7)
    request_service.schedule_follow_up(request.request_id, scheduled_date=next_week, notes="Check oil level")
    done = request_service.complete_follow_up(request.request_id)
    assert done.follow_up.required is True
    assert done.follow_up.completed is True
    assert done.follow_up.notes == "Check oil level"


def test_overdue_only_for_open_requests(
    request_service: RequestService, customer: Customer, clock: FakeClock
) -> None:
    request = request_service.create_request(customer.id, request_draft())
    assert request_service.is_overdue(request) is False

    clock.advance(minutes=1)
    assert request_service.is_overdue(request) is True

    cancelled = request_service.cancel(
        request.request_id,
        actor=CustomerActor(id=customer.id),
        reason=CancellationReason.CUSTOMER_REQUESTED,
    )
    assert request_service.is_overdue(cancelled) is False


def test_pending_requests_near_a_point(request_service: RequestService, customer: Customer, mechanic: Mechanic) -> None:
    near = request_service.create_request(customer.id, request_draft())
    assigned = _assigned(request_service, customer, mechanic)
    far_location = {
        "coordinates": {"longitude": CITY_LONGITUDE, "latitude": CITY_LATITUDE + 1.0},
        "address": {"addressLine1": "Highway 44", "city": "Nizamabad", "pincode": "503001"},
    }
    request_service.create_request(customer.id, request_draft(location=far_location))

    matches = request_service.find_pending_near(CITY_CENTRE, max_distance_m=5000)
    assert [request.request_id for request, _distance in matches] == [near.request_id]
    assert assigned.request_id not in {request.request_id for request, _distance in matches}


def test_request_statistics_overall_and_per_mechanic(
    request_service: RequestService,
    account_service: AccountService,
    customer: Customer,
    mechanic: Mechanic,
    clock: FakeClock,
) -> None:
    completed = _assigned(request_service, customer, mechanic)
    request_service.estimate_for_request(completed.request_id)
    _complete(request_service, completed, mechanic, clock)
    request_service.rate_mechanic(completed.request_id, customer=CustomerActor(id=customer.id), rating=4)

    cancelled = request_service.create_request(customer.id, request_draft())
    request_service.cancel(
        cancelled.request_id,
        actor=CustomerActor(id=customer.id),
        reason=CancellationReason.OTHER,
    )
    request_service.create_request(customer.id, request_draft())

    overall = request_service.statistics()
    assert overall.total_requests == 3
    assert overall.completed_requests == 1
    assert overall.cancelled_requests == 1
    assert overall.total_earnings == 118
    assert overall.average_rating == 4
    assert overall.average_service_time == 45

    scoped = request_service.statistics(mechanic_id=mechanic.id)
    assert scoped.total_requests == 1
    assert scoped.to_dict()["completed_requests"] == 1

    other = approved_mechanic(account_service, email="idle@example.com", phone="9111111111")
    empty = request_service.statistics(mechanic_id=other.id)
    assert empty.total_requests == 0
    assert empty.average_rating is None


def test_other_mechanic_cannot_accept_an_assigned_request(
    request_service: RequestService, account_service: AccountService, customer: Customer, mechanic: Mechanic
) -> None:
    other = approved_mechanic(account_service, email="other@example.com", phone="9100000077")
    request = _assigned(request_service, customer, mechanic)
    with pytest.raises(ValidationError):
        request_service.transition(request.request_id, RequestStatus.ACCEPTED, actor=MechanicActor(id=other.id))
    stored = request_service.get_request(request.request_id)
    assert stored.status is RequestStatus.ASSIGNED
    assert stored.version == 2
