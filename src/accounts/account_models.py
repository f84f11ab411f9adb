# This module declares the stored shape of customer and mechanic accounts.
# Both kinds share identity and credential state; mechanics add business and rate card details.
# Field validators enforce the input patterns at construction.
# Derived values are maintained by account_rules, never set directly.

from __future__ import annotations

import re
from datetime import UTC, date, datetime
from enum import Enum

from pydantic import Field, field_validator, model_validator

from src.common.documents import DocumentModel

EMAIL_RE = re.compile(r"^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,3})+$", re.ASCII)
PHONE_RE = re.compile(r"^[6-9]\d{9}$")
PINCODE_RE = re.compile(r"^\d{6}$")
AADHAR_RE = re.compile(r"^\d{12}$")
PAN_RE = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")
TIME_OF_DAY_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_BYTES = 72
MIN_VEHICLE_YEAR = 1990


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class AccountKind(str, Enum):
    CUSTOMER = "customer"
    MECHANIC = "mechanic"
    ADMIN = "admin"


class VehicleType(str, Enum):
    BIKE = "bike"
    CAR = "car"
    AUTO = "auto"
    TRUCK = "truck"


class FuelType(str, Enum):
    PETROL = "petrol"
    DIESEL = "diesel"
    ELECTRIC = "electric"
    CNG = "cng"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class Language(str, Enum):
    ENGLISH = "english"
    TELUGU = "telugu"
    HINDI = "hindi"


class AddressType(str, Enum):
    HOME = "home"
    WORK = "work"
    OTHER = "other"


class Specialization(str, Enum):
    BIKE_REPAIR = "bike_repair"
    CAR_REPAIR = "car_repair"
    AUTO_REPAIR = "auto_repair"
    TRUCK_REPAIR = "truck_repair"
    ELECTRICAL = "electrical"
    ENGINE = "engine"
    BRAKE = "brake"
    TRANSMISSION = "transmission"
    AC_REPAIR = "ac_repair"
    BATTERY = "battery"
    TIRE = "tire"
    OIL_CHANGE = "oil_change"
    GENERAL_MAINTENANCE = "general_maintenance"


class BusinessType(str, Enum):
    INDIVIDUAL = "individual"
    PARTNERSHIP = "partnership"
    COMPANY = "company"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


def _validate_pincode(value: str) -> str:
    if not PINCODE_RE.match(value):
        raise ValueError("Invalid pincode format")
    return value


class GeoPoint(DocumentModel):
    longitude: float = Field(ge=-180, le=180)
    latitude: float = Field(ge=-90, le=90)

    @classmethod
    def from_coordinates(cls, coordinates: list[float] | tuple[float, float]) -> GeoPoint:
        """Build from a GeoJSON-ordered `[longitude, latitude]` pair."""

        longitude, latitude = coordinates
        return cls(longitude=longitude, latitude=latitude)

    def as_coordinates(self) -> list[float]:
        return [self.longitude, self.latitude]


class CustomerAddress(DocumentModel):
    type: AddressType = AddressType.HOME
    address_line1: str = Field(min_length=1)
    address_line2: str | None = None
    city: str = Field(min_length=1)
    state: str = "Telangana"
    pincode: str
    coordinates: GeoPoint | None = None
    is_default: bool = False

    @field_validator("pincode")
    @classmethod
    def validate_pincode(cls, value: str) -> str:
        return _validate_pincode(value)


class CustomerVehicle(DocumentModel):
    vehicle_type: VehicleType
    brand: str = Field(min_length=1)
    model: str = Field(min_length=1)
    year: int
    registration_number: str = Field(min_length=1)
    fuel_type: FuelType
    is_active: bool = True

    @field_validator("registration_number")
    @classmethod
    def normalize_registration(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("year")
    @classmethod
    def validate_year(cls, value: int) -> int:
        latest = utc_now().year + 1
        if not (MIN_VEHICLE_YEAR <= value <= latest):
            raise ValueError(f"year must be between {MIN_VEHICLE_YEAR} and {latest}")
        return value


class NotificationPreferences(DocumentModel):
    email: bool = True
    sms: bool = True
    push: bool = True


class CustomerPreferences(DocumentModel):
    language: Language = Language.TELUGU
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)
    currency: str = "INR"


class MechanicPreferences(DocumentModel):
    language: Language = Language.TELUGU
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)
    auto_accept_bookings: bool = False
    max_bookings_per_day: int = Field(default=10, ge=1)


class RatingSummary(DocumentModel):
    average: float = Field(default=0.0, ge=0, le=5)
    count: int = Field(default=0, ge=0)
    breakdown: dict[str, int] = Field(default_factory=lambda: {str(star): 0 for star in range(1, 6)})


class SecurityState(DocumentModel):
    password_hash: str
    login_attempts: int = Field(default=0, ge=0)
    lock_until: datetime | None = None
    last_login: datetime | None = None
    reset_password_token_hash: str | None = None
    reset_password_expires_at: datetime | None = None


class DaySchedule(DocumentModel):
    is_available: bool = True
    start_time: str = "09:00"
    end_time: str = "18:00"

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time_of_day(cls, value: str) -> str:
        if not TIME_OF_DAY_RE.match(value):
            raise ValueError("time must be HH:MM in 24-hour format")
        return value

    @model_validator(mode="after")
    def validate_window(self) -> DaySchedule:
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self


class WeeklyAvailability(DocumentModel):
    monday: DaySchedule = Field(default_factory=DaySchedule)
    tuesday: DaySchedule = Field(default_factory=DaySchedule)
    wednesday: DaySchedule = Field(default_factory=DaySchedule)
    thursday: DaySchedule = Field(default_factory=DaySchedule)
    friday: DaySchedule = Field(default_factory=DaySchedule)
    saturday: DaySchedule = Field(default_factory=lambda: DaySchedule(end_time="16:00"))
    sunday: DaySchedule = Field(
        default_factory=lambda: DaySchedule(is_available=False, start_time="10:00", end_time="14:00")
    )


class RateCard(DocumentModel):
    base_fee: float = Field(default=100.0, ge=0)
    per_km_charge: float = Field(default=10.0, ge=0)
    hourly_rate: float = Field(default=200.0, ge=0)
    emergency_multiplier: float = Field(default=1.5, ge=1)


class MechanicStatistics(DocumentModel):
    total_bookings: int = Field(default=0, ge=0)
    completed_bookings: int = Field(default=0, ge=0)
    cancelled_bookings: int = Field(default=0, ge=0)
    total_earnings: float = Field(default=0.0, ge=0)
    average_response_time: float = Field(default=0.0, ge=0)
    completion_rate: int = Field(default=0, ge=0, le=100)


class BusinessAddress(DocumentModel):
    address_line1: str = Field(min_length=1)
    address_line2: str | None = None
    city: str = Field(min_length=1)
    state: str = "Telangana"
    pincode: str
    coordinates: GeoPoint

    @field_validator("pincode")
    @classmethod
    def validate_pincode(cls, value: str) -> str:
        return _validate_pincode(value)


class ServiceArea(DocumentModel):
    city: str | None = None
    pincode: str | None = None
    radius_km: float = Field(default=10.0, gt=0)


class IdentityDocument(DocumentModel):
    number: str | None = None
    image: str | None = None
    verified: bool = False


class IdentityDocuments(DocumentModel):
    aadhar_card: IdentityDocument = Field(default_factory=IdentityDocument)
    pan_card: IdentityDocument = Field(default_factory=IdentityDocument)
    driving_license: IdentityDocument = Field(default_factory=IdentityDocument)

    @model_validator(mode="after")
    def validate_numbers(self) -> IdentityDocuments:
        if self.aadhar_card.number is not None and not AADHAR_RE.match(self.aadhar_card.number):
            raise ValueError("Invalid Aadhar number")
        if self.pan_card.number is not None and not PAN_RE.match(self.pan_card.number):
            raise ValueError("Invalid PAN number")
        return self


class Certification(DocumentModel):
    name: str | None = None
    issued_by: str | None = None
    issued_date: date | None = None
    expiry_date: date | None = None
    certificate_image: str | None = None


class BankDetails(DocumentModel):
    account_holder_name: str | None = None
    account_number: str | None = None
    ifsc_code: str | None = None
    bank_name: str | None = None
    branch_name: str | None = None
    verified: bool = False


class EmergencyContact(DocumentModel):
    name: str | None = None
    phone: str | None = None
    relation: str | None = None


class AccountBase(DocumentModel):
    id: str
    name: str = Field(min_length=1, max_length=100)
    email: str
    phone: str
    profile_image: str | None = None
    date_of_birth: date | None = None
    gender: Gender = Gender.MALE
    is_active: bool = True
    is_verified: bool = False
    rating: RatingSummary = Field(default_factory=RatingSummary)
    security: SecurityState
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Name is required")
        return stripped

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not EMAIL_RE.match(normalized):
            raise ValueError("Please enter a valid email")
        return normalized

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: str) -> str:
        normalized = value.strip()
        if not PHONE_RE.match(normalized):
            raise ValueError("Please enter a valid Indian phone number")
        return normalized


class Customer(AccountBase):
    kind: AccountKind = AccountKind.CUSTOMER
    addresses: list[CustomerAddress] = Field(default_factory=list)
    vehicles: list[CustomerVehicle] = Field(default_factory=list)
    email_verified: bool = False
    phone_verified: bool = False
    preferences: CustomerPreferences = Field(default_factory=CustomerPreferences)
    total_bookings: int = Field(default=0, ge=0)
    total_spent: float = Field(default=0.0, ge=0)


class Mechanic(AccountBase):
    kind: AccountKind = AccountKind.MECHANIC
    is_active: bool = False
    is_online: bool = False
    experience: int = Field(ge=0)
    specializations: list[Specialization] = Field(min_length=1)
    vehicle_types: list[VehicleType] = Field(min_length=1)
    certifications: list[Certification] = Field(default_factory=list)
    documents: IdentityDocuments = Field(default_factory=IdentityDocuments)
    business_name: str | None = None
    business_type: BusinessType = BusinessType.INDIVIDUAL
    business_address: BusinessAddress
    service_areas: list[ServiceArea] = Field(default_factory=list)
    availability: WeeklyAvailability = Field(default_factory=WeeklyAvailability)
    pricing: RateCard = Field(default_factory=RateCard)
    verification_status: VerificationStatus = VerificationStatus.PENDING
    statistics: MechanicStatistics = Field(default_factory=MechanicStatistics)
    bank_details: BankDetails = Field(default_factory=BankDetails)
    emergency_contact: EmergencyContact = Field(default_factory=EmergencyContact)
    preferences: MechanicPreferences = Field(default_factory=MechanicPreferences)


Account = Customer | Mechanic
