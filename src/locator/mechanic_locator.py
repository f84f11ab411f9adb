# This module answers "who is near this point" questions for accounts and open requests.
# Results are filtered and sorted by fixed rules; there is no scoring or dispatch optimization.
# Mechanic searches default to active, verified accounts unless the caller passes other filters.

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from src.accounts.account_models import Account, AccountKind, GeoPoint, Mechanic, VehicleType
from src.accounts.account_store import AccountStore
from src.pricing.pricing_config import MarketplacePolicy
from src.service_requests.request_models import ServiceRequest
from src.service_requests.request_store import RequestStore

LOGGER = logging.getLogger("locator")


@dataclass(frozen=True)
class LocatorFilters:
    is_active: bool | None = None
    is_verified: bool | None = None
    is_online: bool | None = None


MECHANIC_DEFAULT_FILTERS = LocatorFilters(is_active=True, is_verified=True)


@dataclass(frozen=True)
class NearbyAccount:
    account: Account
    distance_m: float

    @property
    def distance_km(self) -> float:
        return round(self.distance_m / 1000.0, 2)


@dataclass(frozen=True)
class NearbyRequest:
    request: ServiceRequest
    distance_m: float


def _value(item: str | Enum) -> str:
    return item.value if isinstance(item, Enum) else str(item)


def offers_service(mechanic: Mechanic, service_type: str | Enum, vehicle_type: str | VehicleType) -> bool:
    """Literal match: the service type string must be one of the mechanic's specializations."""

    specializations = {_value(item) for item in mechanic.specializations}
    vehicle_types = {_value(item) for item in mechanic.vehicle_types}
    return _value(service_type) in specializations and _value(vehicle_type) in vehicle_types


class MechanicLocator:
    """Proximity queries over stored accounts and pending requests."""

    def __init__(self, *, accounts: AccountStore, requests: RequestStore, policy: MarketplacePolicy) -> None:
        self.accounts = accounts
        self.requests = requests
        self.default_radius_m = policy.default_search_radius_m

    def find_nearby(
        self,
        kind: AccountKind,
        point: GeoPoint,
        max_distance_m: float | None = None,
        *,
        filters: LocatorFilters | None = None,
    ) -> list[NearbyAccount]:
        """Accounts of `kind` within the radius, nearest first."""

        if filters is None:
            filters = MECHANIC_DEFAULT_FILTERS if kind is AccountKind.MECHANIC else LocatorFilters()
        radius = self.default_radius_m if max_distance_m is None else max_distance_m
        matches = self.accounts.find_near(
            kind,
            point,
            max_distance_m=radius,
            is_active=filters.is_active,
            is_verified=filters.is_verified,
            is_online=filters.is_online,
        )
        LOGGER.debug("find_nearby kind=%s radius_m=%s matches=%s", kind.value, radius, len(matches))
        return [NearbyAccount(account=account, distance_m=distance) for account, distance in matches]

    def find_available_for_service(
        self,
        service_type: str | Enum,
        vehicle_type: str | VehicleType,
        point: GeoPoint,
        max_distance_m: float | None = None,
    ) -> list[NearbyAccount]:
        """Online mechanics offering the service, best rated first and nearest first among equals."""

        candidates = self.find_nearby(
            AccountKind.MECHANIC,
            point,
            max_distance_m,
            filters=LocatorFilters(is_active=True, is_verified=True, is_online=True),
        )
        matches = [
            candidate
            for candidate in candidates
            if isinstance(candidate.account, Mechanic)
            and offers_service(candidate.account, service_type, vehicle_type)
        ]
        matches.sort(key=lambda candidate: (-candidate.account.rating.average, candidate.distance_m))
        LOGGER.info(
            "available mechanics service=%s vehicle=%s candidates=%s matches=%s",
            _value(service_type),
            _value(vehicle_type),
            len(candidates),
            len(matches),
        )
        return matches

    def find_pending_requests_near(self, point: GeoPoint, max_distance_m: float | None = None) -> list[NearbyRequest]:
        radius = self.default_radius_m if max_distance_m is None else max_distance_m
        return [
            NearbyRequest(request=request, distance_m=distance)
            for request, distance in self.requests.find_pending_near(point, max_distance_m=radius)
        ]
