"""
Shared builders for account and service request tests.
They return wire-shaped payloads so tests exercise the same validation path as API input.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from src.accounts.account_models import Mechanic
from src.accounts.account_service import AccountService

TEST_JWT_SECRET = "test-secret-key"
TEST_BCRYPT_ROUNDS = 4
TEST_PASSWORD = "s3cret-pass"

# Hyderabad city centre; 0.01 degrees of latitude is roughly 1.1 km.
CITY_LONGITUDE = 78.4867
CITY_LATITUDE = 17.3850


class FakeClock:
    """Settable clock; starts at the current minute so signed tokens stay valid."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(tz=UTC).replace(second=0, microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


def customer_profile(**overrides: Any) -> dict[str, Any]:
    profile: dict[str, Any] = {
        "name": "Ravi Kumar",
        "email": "Ravi.Kumar@Example.com",
        "phone": "9876543210",
        "addresses": [
            {
                "type": "home",
                "addressLine1": "12 Banjara Hills",
                "city": "Hyderabad",
                "pincode": "500034",
                "coordinates": {"longitude": CITY_LONGITUDE, "latitude": CITY_LATITUDE},
            }
        ],
    }
    profile.update(overrides)
    return profile


def mechanic_profile(
    *,
    email: str = "mechanic@example.com",
    phone: str = "9123456780",
    latitude_offset: float = 0.0,
    specializations: tuple[str, ...] = ("oil_change", "car_repair"),
    vehicle_types: tuple[str, ...] = ("car",),
    **overrides: Any,
) -> dict[str, Any]:
    profile: dict[str, Any] = {
        "name": "Suresh Motors",
        "email": email,
        "phone": phone,
        "experience": 6,
        "specializations": list(specializations),
        "vehicleTypes": list(vehicle_types),
        "businessAddress": {
            "addressLine1": "Road No 1",
            "city": "Hyderabad",
            "pincode": "500001",
            "coordinates": {"longitude": CITY_LONGITUDE, "latitude": CITY_LATITUDE + latitude_offset},
        },
    }
    profile.update(overrides)
    return profile


def request_draft(**overrides: Any) -> dict[str, Any]:
    draft: dict[str, Any] = {
        "vehicle": {
            "vehicleType": "car",
            "brand": "Maruti",
            "model": "Swift",
            "year": 2019,
            "registrationNumber": "ts09ab1234",
            "fuelType": "petrol",
        },
        "serviceType": "oil_change",
        "problemDescription": "Engine oil warning light is on.",
        "urgency": "medium",
        "location": {
            "coordinates": {"longitude": CITY_LONGITUDE, "latitude": CITY_LATITUDE},
            "address": {"addressLine1": "12 Banjara Hills", "city": "Hyderabad", "pincode": "500034"},
        },
    }
    draft.update(overrides)
    return draft


def approved_mechanic(accounts: AccountService, *, online: bool = True, **profile: Any) -> Mechanic:
    mechanic = accounts.register_mechanic(mechanic_profile(**profile), TEST_PASSWORD)
    mechanic = accounts.verify_mechanic(mechanic.id, approved=True)
    if online:
        mechanic = accounts.set_online_status(mechanic.id, True)
    return mechanic
