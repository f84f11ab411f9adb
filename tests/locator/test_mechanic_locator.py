"""
Unit tests for proximity search over stored mechanics, customers, and pending requests.
It asserts expected behavior and guards against regressions in the corresponding component.
These tests are executed by `pytest` locally and in CI and should remain deterministic.
"""

from __future__ import annotations

from src.accounts.account_models import AccountKind, GeoPoint
from src.accounts.account_service import AccountService
from src.locator.mechanic_locator import LocatorFilters, MechanicLocator, offers_service
from src.service_requests.request_models import ServiceType
from src.service_requests.request_service import RequestService
from tests.support import (
    CITY_LATITUDE,
    CITY_LONGITUDE,
    TEST_PASSWORD,
    approved_mechanic,
    customer_profile,
    mechanic_profile,
    request_draft,
)

CITY_CENTRE = GeoPoint(longitude=CITY_LONGITUDE, latitude=CITY_LATITUDE)


def test_find_nearby_returns_active_verified_mechanics_nearest_first(
    locator: MechanicLocator, account_service: AccountService
) -> None:
    mid = approved_mechanic(account_service, email="mid@example.com", phone="9100000001", latitude_offset=0.02)
    near = approved_mechanic(account_service, email="near@example.com", phone="9100000002", latitude_offset=0.005)
    approved_mechanic(account_service, email="far@example.com", phone="9100000003", latitude_offset=0.2)
    account_service.register_mechanic(
        mechanic_profile(email="pending@example.com", phone="9100000004", latitude_offset=0.001),
        TEST_PASSWORD,
    )

    results = locator.find_nearby(AccountKind.MECHANIC, CITY_CENTRE)
    assert [result.account.id for result in results] == [near.id, mid.id]
    assert results[0].distance_km < results[1].distance_km
    assert 500 < results[0].distance_m < 600

    within_one_km = locator.find_nearby(AccountKind.MECHANIC, CITY_CENTRE, 1000)
    assert [result.account.id for result in within_one_km] == [near.id]


def test_explicit_filters_override_mechanic_defaults(
    locator: MechanicLocator, account_service: AccountService
) -> None:
    pending = account_service.register_mechanic(
        mechanic_profile(email="pending@example.com", phone="9100000004", latitude_offset=0.001),
        TEST_PASSWORD,
    )
    results = locator.find_nearby(AccountKind.MECHANIC, CITY_CENTRE, 5000, filters=LocatorFilters())
    assert [result.account.id for result in results] == [pending.id]


def test_find_nearby_customers(locator: MechanicLocator, account_service: AccountService) -> None:
    customer = account_service.register_customer(customer_profile(), TEST_PASSWORD)
    account_service.register_customer(
        customer_profile(email="noaddress@example.com", phone="9100000010", addresses=[]),
        TEST_PASSWORD,
    )
    results = locator.find_nearby(AccountKind.CUSTOMER, CITY_CENTRE, 2000)
    assert [result.account.id for result in results] == [customer.id]
    assert results[0].distance_m == 0


def test_available_mechanics_filter_service_vehicle_and_online_then_sort_by_rating(
    locator: MechanicLocator, account_service: AccountService
) -> None:
    top_rated = approved_mechanic(account_service, email="a@example.com", phone="9100000021", latitude_offset=0.02)
    closer = approved_mechanic(account_service, email="b@example.com", phone="9100000022", latitude_offset=0.005)
    same_rating_far = approved_mechanic(
        account_service, email="c@example.com", phone="9100000023", latitude_offset=0.03
    )
    approved_mechanic(account_service, online=False, email="d@example.com", phone="9100000024", latitude_offset=0.001)
    approved_mechanic(
        account_service,
        email="e@example.com",
        phone="9100000025",
        latitude_offset=0.002,
        vehicle_types=("bike",),
    )
    approved_mechanic(
        account_service,
        email="f@example.com",
        phone="9100000026",
        latitude_offset=0.003,
        specializations=("battery",),
    )
    account_service.rate_account(AccountKind.MECHANIC, top_rated.id, 5)
    account_service.rate_account(AccountKind.MECHANIC, closer.id, 4)
    account_service.rate_account(AccountKind.MECHANIC, same_rating_far.id, 4)

    results = locator.find_available_for_service(ServiceType.OIL_CHANGE, "car", CITY_CENTRE)
    assert [result.account.id for result in results] == [top_rated.id, closer.id, same_rating_far.id]


def test_service_type_is_matched_literally_against_specializations(account_service: AccountService) -> None:
    mechanic = approved_mechanic(account_service, specializations=("tire", "brake"))
    assert offers_service(mechanic, "tire", "car") is True
    assert offers_service(mechanic, ServiceType.TIRE_SERVICE, "car") is False
    assert offers_service(mechanic, "tire", "truck") is False


def test_find_pending_requests_near(
    locator: MechanicLocator, account_service: AccountService, request_service: RequestService
) -> None:
    customer = account_service.register_customer(customer_profile(), TEST_PASSWORD)
    request = request_service.create_request(customer.id, request_draft())

    results = locator.find_pending_requests_near(CITY_CENTRE)
    assert [result.request.request_id for result in results] == [request.request_id]
    assert locator.find_pending_requests_near(GeoPoint(longitude=0, latitude=0)) == []


def test_find_nearby_includes_mechanic_at_the_edge_of_the_radius(
    locator: MechanicLocator, account_service: AccountService
) -> None:
    edge = approved_mechanic(account_service, latitude_offset=0.08984)
    results = locator.find_nearby(AccountKind.MECHANIC, CITY_CENTRE, 10_000)
    assert [result.account.id for result in results] == [edge.id]
    assert 9_900 < results[0].distance_m < 10_000
