# This module persists customer and mechanic records through SQLAlchemy Core tables.
# Each record is stored as a JSON document next to the scalar columns that queries filter on.
# Uniqueness of contact fields and vehicle registrations surfaces as DuplicateKeyError.
# Proximity queries prefilter with a bounding box in SQL and rank the survivors exactly in Python.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Table, delete, insert, or_, select, text, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from src.accounts.account_models import Account, AccountKind, Customer, GeoPoint, Mechanic
from src.common.db import Database
from src.common.errors import DuplicateKeyError, NotFoundError, ValidationError
from src.locator.geo_distance import bounding_box, rank_by_distance
from src.storage.ddl import customers, mechanics, vehicle_registrations

LOGGER = logging.getLogger("storage")

CUSTOMER_STATISTICS_SQL = """
SELECT
    COUNT(*) AS total_customers,
    COALESCE(SUM(CASE WHEN is_active THEN 1 ELSE 0 END), 0) AS active_customers,
    COALESCE(SUM(CASE WHEN is_verified THEN 1 ELSE 0 END), 0) AS verified_customers,
    COALESCE(SUM(vehicle_count), 0) AS total_vehicles,
    AVG(rating_average) AS average_rating
FROM customers
"""


@dataclass(frozen=True)
class CustomerStatistics:
    total_customers: int
    active_customers: int
    verified_customers: int
    total_vehicles: int
    average_rating: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_customers": self.total_customers,
            "active_customers": self.active_customers,
            "verified_customers": self.verified_customers,
            "total_vehicles": self.total_vehicles,
            "average_rating": self.average_rating,
        }


def _location_of(account: Account) -> GeoPoint | None:
    if isinstance(account, Mechanic):
        return account.business_address.coordinates
    default = next((address for address in account.addresses if address.is_default), None)
    if default is None and account.addresses:
        default = account.addresses[0]
    return default.coordinates if default is not None else None


def _row_values(account: Account) -> dict[str, Any]:
    location = _location_of(account)
    values: dict[str, Any] = {
        "id": account.id,
        "email": account.email,
        "phone": account.phone,
        "is_active": account.is_active,
        "is_verified": account.is_verified,
        "latitude": location.latitude if location is not None else None,
        "longitude": location.longitude if location is not None else None,
        "rating_average": account.rating.average,
        "reset_token_hash": account.security.reset_password_token_hash,
        "document": account.to_document(),
        "created_at": account.created_at,
        "updated_at": account.updated_at,
    }
    if isinstance(account, Mechanic):
        values["is_online"] = account.is_online
    else:
        values["vehicle_count"] = len(account.vehicles)
    return values


class AccountStore:
    """Persistence for both account kinds; each kind has its own table."""

    def __init__(self, *, database: Database) -> None:
        self.database = database

    @staticmethod
    def _table(kind: AccountKind) -> Table:
        if kind is AccountKind.CUSTOMER:
            return customers
        if kind is AccountKind.MECHANIC:
            return mechanics
        raise ValidationError(f"Accounts of kind {kind.value!r} are not stored.")

    @staticmethod
    def _parse(kind: AccountKind, document: dict[str, Any]) -> Account:
        if kind is AccountKind.CUSTOMER:
            return Customer.model_validate(document)
        return Mechanic.model_validate(document)

    def insert(self, account: Account) -> Account:
        table = self._table(account.kind)
        try:
            with self.database.begin() as connection:
                self._ensure_unique(connection, table, account)
                connection.execute(insert(table).values(**_row_values(account)))
                self._sync_registrations(connection, account)
        except IntegrityError as exc:
            raise DuplicateKeyError(f"{account.kind.value.title()} already exists.") from exc
        return account

    def save(self, account: Account) -> Account:
        table = self._table(account.kind)
        try:
            with self.database.begin() as connection:
                self._ensure_unique(connection, table, account)
                result = connection.execute(
                    update(table).where(table.c.id == account.id).values(**_row_values(account))
                )
                if result.rowcount == 0:
                    raise NotFoundError(f"{account.kind.value.title()} {account.id} not found.")
                self._sync_registrations(connection, account)
        except IntegrityError as exc:
            raise DuplicateKeyError(f"{account.kind.value.title()} update conflicts with an existing record.") from exc
        return account

    def find(self, kind: AccountKind, account_id: str) -> Account | None:
        table = self._table(kind)
        with self.database.begin() as connection:
            document = connection.execute(
                select(table.c.document).where(table.c.id == account_id)
            ).scalar_one_or_none()
        return self._parse(kind, document) if document is not None else None

    def get(self, kind: AccountKind, account_id: str) -> Account:
        account = self.find(kind, account_id)
        if account is None:
            raise NotFoundError(f"{kind.value.title()} {account_id} not found.")
        return account

    def find_by_identifier(self, kind: AccountKind, identifier: str) -> Account | None:
        """Look up by email (case-insensitive) or phone."""

        table = self._table(kind)
        normalized = identifier.strip()
        with self.database.begin() as connection:
            document = connection.execute(
                select(table.c.document).where(
                    or_(table.c.email == normalized.lower(), table.c.phone == normalized)
                )
            ).scalar_one_or_none()
        return self._parse(kind, document) if document is not None else None

    def find_by_reset_token(self, kind: AccountKind, token_hash: str) -> Account | None:
        table = self._table(kind)
        with self.database.begin() as connection:
            document = connection.execute(
                select(table.c.document).where(table.c.reset_token_hash == token_hash)
            ).scalar_one_or_none()
        return self._parse(kind, document) if document is not None else None

    def find_near(
        self,
        kind: AccountKind,
        point: GeoPoint,
        *,
        max_distance_m: float,
        is_active: bool | None = None,
        is_verified: bool | None = None,
        is_online: bool | None = None,
    ) -> list[tuple[Account, float]]:
        """Accounts within `max_distance_m` of `point`, nearest-first, with distances in meters."""

        table = self._table(kind)
        box = bounding_box(point, max_distance_m)
        query = select(table.c.latitude, table.c.longitude, table.c.document).where(
            table.c.latitude.is_not(None),
            table.c.longitude.is_not(None),
            table.c.latitude.between(box.min_latitude, box.max_latitude),
        )
        if not box.spans_all_longitudes:
            query = query.where(table.c.longitude.between(box.min_longitude, box.max_longitude))
        if is_active is not None:
            query = query.where(table.c.is_active == is_active)
        if is_verified is not None:
            query = query.where(table.c.is_verified == is_verified)
        if is_online is not None:
            if "is_online" not in table.c:
                raise ValidationError(f"{kind.value.title()} accounts have no online status.")
            query = query.where(table.c.is_online == is_online)

        with self.database.begin() as connection:
            rows = connection.execute(query).all()

        ranked = rank_by_distance(
            origin=point,
            rows=[row.document for row in rows],
            latitudes=[row.latitude for row in rows],
            longitudes=[row.longitude for row in rows],
            max_distance_m=max_distance_m,
        )
        return [(self._parse(kind, document), distance) for document, distance in ranked]

    def customer_statistics(self) -> CustomerStatistics:
        with self.database.begin() as connection:
            row = connection.execute(text(CUSTOMER_STATISTICS_SQL)).mappings().one()
        average = row["average_rating"]
        return CustomerStatistics(
            total_customers=int(row["total_customers"]),
            active_customers=int(row["active_customers"]),
            verified_customers=int(row["verified_customers"]),
            total_vehicles=int(row["total_vehicles"]),
            average_rating=round(float(average), 2) if average is not None else None,
        )

    def _ensure_unique(self, connection: Connection, table: Table, account: Account) -> None:
        for field_name in ("email", "phone"):
            column = table.c[field_name]
            value = getattr(account, field_name)
            clash = connection.execute(
                select(table.c.id).where(column == value, table.c.id != account.id).limit(1)
            ).first()
            if clash is not None:
                raise DuplicateKeyError(
                    f"An account with this {field_name} already exists.",
                    field=field_name,
                )

        if isinstance(account, Customer):
            numbers = [vehicle.registration_number for vehicle in account.vehicles]
            if len(numbers) != len(set(numbers)):
                raise DuplicateKeyError("Vehicle registration numbers must be unique.", field="registration_number")
            if numbers:
                clash = connection.execute(
                    select(vehicle_registrations.c.registration_number)
                    .where(
                        vehicle_registrations.c.registration_number.in_(numbers),
                        vehicle_registrations.c.customer_id != account.id,
                    )
                    .limit(1)
                ).first()
                if clash is not None:
                    raise DuplicateKeyError(
                        f"Vehicle {clash.registration_number} is already registered.",
                        field="registration_number",
                    )

    @staticmethod
    def _sync_registrations(connection: Connection, account: Account) -> None:
        if not isinstance(account, Customer):
            return
        connection.execute(delete(vehicle_registrations).where(vehicle_registrations.c.customer_id == account.id))
        if account.vehicles:
            connection.execute(
                insert(vehicle_registrations),
                [
                    {"registration_number": vehicle.registration_number, "customer_id": account.id}
                    for vehicle in account.vehicles
                ],
            )
