# This module declares the stored shape of a service request and its embedded sub-records.
# Enum values are the exact strings exposed to API clients and must not change.
# The records carry no behavior; transitions and pricing live in lifecycle and cost_estimator.

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import AwareDatetime, Field, field_validator

from src.accounts.account_models import FuelType, GeoPoint, VehicleType, utc_now
from src.common.documents import DocumentModel
from src.service_requests.actors import Actor, MessageSender

MAX_PROBLEM_DESCRIPTION_LENGTH = 500


class RequestStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    ACCEPTED = "accepted"
    ON_THE_WAY = "on_the_way"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset(
    {RequestStatus.COMPLETED, RequestStatus.CANCELLED, RequestStatus.REJECTED}
)


class ServiceType(str, Enum):
    BREAKDOWN = "breakdown"
    MAINTENANCE = "maintenance"
    REPAIR = "repair"
    INSPECTION = "inspection"
    OIL_CHANGE = "oil_change"
    TIRE_SERVICE = "tire_service"
    BATTERY_SERVICE = "battery_service"
    BRAKE_SERVICE = "brake_service"
    AC_SERVICE = "ac_service"
    ENGINE_SERVICE = "engine_service"
    ELECTRICAL_SERVICE = "electrical_service"
    TRANSMISSION_SERVICE = "transmission_service"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"


class PreferredTime(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    FLEXIBLE = "flexible"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    WALLET = "wallet"
    BANK_TRANSFER = "bank_transfer"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class CancellationReason(str, Enum):
    CUSTOMER_REQUESTED = "customer_requested"
    MECHANIC_UNAVAILABLE = "mechanic_unavailable"
    WEATHER_CONDITIONS = "weather_conditions"
    VEHICLE_MOVED = "vehicle_moved"
    PAYMENT_ISSUE = "payment_issue"
    EMERGENCY = "emergency"
    OTHER = "other"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    LOCATION = "location"


class MediaStage(str, Enum):
    BEFORE_SERVICE = "before_service"
    AFTER_SERVICE = "after_service"
    DOCUMENTS = "documents"


class VehicleSnapshot(DocumentModel):
    vehicle_type: VehicleType
    brand: str = Field(min_length=1)
    model: str = Field(min_length=1)
    year: int | None = None
    registration_number: str = Field(min_length=1)
    fuel_type: FuelType | None = None

    @field_validator("registration_number")
    @classmethod
    def normalize_registration(cls, value: str) -> str:
        return value.strip().upper()


class RequestAddress(DocumentModel):
    address_line1: str = Field(min_length=1)
    address_line2: str | None = None
    city: str = Field(min_length=1)
    state: str = "Telangana"
    pincode: str = Field(min_length=1)


class RequestLocation(DocumentModel):
    coordinates: GeoPoint
    address: RequestAddress
    landmark: str | None = None


class StatusHistoryEntry(DocumentModel):
    status: RequestStatus
    timestamp: datetime
    actor: Actor | None = None
    comment: str | None = None


class TimeTracking(DocumentModel):
    requested_at: datetime
    assigned_at: datetime | None = None
    accepted_at: datetime | None = None
    arrived_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    # Whole minutes, set only when both endpoints are known.
    response_time: int | None = None
    arrival_time: int | None = None
    service_time: int | None = None


class PricingBreakdown(DocumentModel):
    service_fee: float = Field(default=0.0, ge=0)
    travel_fee: float = Field(default=0.0, ge=0)
    parts_cost: float = Field(default=0.0, ge=0)
    labor_cost: float = Field(default=0.0, ge=0)
    emergency_charge: float = Field(default=0.0, ge=0)
    tax: float = Field(default=0.0, ge=0)
    discount: float = Field(default=0.0, ge=0)


class RequestPricing(DocumentModel):
    estimated_cost: float = Field(default=0.0, ge=0)
    final_cost: float = 0.0
    breakdown: PricingBreakdown = Field(default_factory=PricingBreakdown)
    currency: str = "INR"


class Payment(DocumentModel):
    method: PaymentMethod = PaymentMethod.CASH
    status: PaymentStatus = PaymentStatus.PENDING
    amount: float | None = None
    transaction_id: str | None = None
    paid_at: datetime | None = None
    refunded_at: datetime | None = None
    refund_reason: str | None = None


class MediaFiles(DocumentModel):
    before_service: list[str] = Field(default_factory=list)
    after_service: list[str] = Field(default_factory=list)
    documents: list[str] = Field(default_factory=list)


class Warranty(DocumentModel):
    duration_months: int | None = Field(default=None, ge=0)
    terms: str | None = None


class PartUsed(DocumentModel):
    name: str = Field(min_length=1)
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)
    # Supplied by the caller; not recomputed from quantity and unit price.
    total_price: float = Field(ge=0)
    warranty: Warranty | None = None


class RatingRecord(DocumentModel):
    rating: int = Field(ge=1, le=5)
    review: str | None = None
    rated_at: datetime


class Message(DocumentModel):
    sender: MessageSender
    message: str = Field(min_length=1)
    message_type: MessageType = MessageType.TEXT
    timestamp: datetime
    is_read: bool = False


class Cancellation(DocumentModel):
    cancelled_by: Actor
    reason: CancellationReason
    comment: str | None = None
    cancelled_at: datetime
    refund_amount: float | None = Field(default=None, ge=0)
    refund_processed: bool = False


class FollowUp(DocumentModel):
    required: bool = False
    scheduled_date: datetime | None = None
    completed: bool = False
    notes: str | None = None


class ServiceRequestDraft(DocumentModel):
    """Customer-supplied fields of a new request."""

    vehicle: VehicleSnapshot
    service_type: ServiceType
    problem_description: str = Field(min_length=1, max_length=MAX_PROBLEM_DESCRIPTION_LENGTH)
    urgency: Urgency = Urgency.MEDIUM
    location: RequestLocation
    scheduled_for: AwareDatetime | None = None
    preferred_time: PreferredTime | None = None
    is_emergency: bool = False
    special_instructions: str | None = None


class ServiceRequest(DocumentModel):
    request_id: str
    customer_id: str
    mechanic_id: str | None = None
    vehicle: VehicleSnapshot
    service_type: ServiceType
    problem_description: str = Field(min_length=1, max_length=MAX_PROBLEM_DESCRIPTION_LENGTH)
    urgency: Urgency = Urgency.MEDIUM
    location: RequestLocation
    scheduled_for: datetime
    preferred_time: PreferredTime | None = None
    is_emergency: bool = False
    status: RequestStatus = RequestStatus.PENDING
    status_history: list[StatusHistoryEntry] = Field(default_factory=list)
    pricing: RequestPricing = Field(default_factory=RequestPricing)
    payment: Payment = Field(default_factory=Payment)
    time_tracking: TimeTracking
    images: MediaFiles = Field(default_factory=MediaFiles)
    parts_used: list[PartUsed] = Field(default_factory=list)
    customer_rating: RatingRecord | None = None
    mechanic_rating: RatingRecord | None = None
    messages: list[Message] = Field(default_factory=list)
    cancellation: Cancellation | None = None
    special_instructions: str | None = None
    distance_km: float = Field(default=0.0, ge=0)
    follow_up: FollowUp = Field(default_factory=FollowUp)
    version: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
