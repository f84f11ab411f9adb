# This module persists service requests with optimistic concurrency control.
# Every update is conditional on the request id plus the version and status that were read.
# A write whose precondition no longer holds fails with ConcurrentUpdateError instead of overwriting.
# The final cost is resettled from the breakdown on every write so stored totals always match their items.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import insert, select, text, update
from sqlalchemy.exc import IntegrityError

from src.accounts.account_models import GeoPoint
from src.common.db import Database
from src.common.errors import ConcurrentUpdateError, DuplicateKeyError, NotFoundError
from src.locator.geo_distance import bounding_box, rank_by_distance
from src.pricing.cost_estimator import settle
from src.service_requests.request_models import RequestStatus, ServiceRequest
from src.storage.ddl import service_requests

LOGGER = logging.getLogger("storage")

REQUEST_STATISTICS_SQL = """
SELECT
    COUNT(*) AS total_requests,
    COALESCE(SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END), 0) AS completed_requests,
    COALESCE(SUM(CASE WHEN status = 'cancelled' THEN 1 ELSE 0 END), 0) AS cancelled_requests,
    COALESCE(SUM(final_cost), 0) AS total_earnings,
    AVG(customer_rating) AS average_rating,
    AVG(service_time) AS average_service_time
FROM service_requests
"""


@dataclass(frozen=True)
class RequestStatistics:
    total_requests: int
    completed_requests: int
    cancelled_requests: int
    total_earnings: float
    average_rating: float | None
    average_service_time: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "completed_requests": self.completed_requests,
            "cancelled_requests": self.cancelled_requests,
            "total_earnings": self.total_earnings,
            "average_rating": self.average_rating,
            "average_service_time": self.average_service_time,
        }


def _row_values(request: ServiceRequest) -> dict[str, Any]:
    point = request.location.coordinates
    return {
        "request_id": request.request_id,
        "customer_id": request.customer_id,
        "mechanic_id": request.mechanic_id,
        "status": request.status.value,
        "service_type": request.service_type.value,
        "latitude": point.latitude,
        "longitude": point.longitude,
        "final_cost": request.pricing.final_cost,
        "customer_rating": request.customer_rating.rating if request.customer_rating is not None else None,
        "service_time": request.time_tracking.service_time,
        "version": request.version,
        "document": request.to_document(),
        "scheduled_for": request.scheduled_for,
        "created_at": request.created_at,
        "updated_at": request.updated_at,
    }


def _optional_round(value: Any) -> float | None:
    return round(float(value), 2) if value is not None else None


class RequestStore:
    """Service request persistence keyed by request id."""

    def __init__(self, *, database: Database) -> None:
        self.database = database

    def insert(self, request: ServiceRequest) -> ServiceRequest:
        request = request.model_copy(update={"pricing": settle(request.pricing), "version": 1})
        try:
            with self.database.begin() as connection:
                connection.execute(insert(service_requests).values(**_row_values(request)))
        except IntegrityError as exc:
            raise DuplicateKeyError(
                f"Request {request.request_id} already exists.",
                field="request_id",
            ) from exc
        return request

    def find(self, request_id: str) -> ServiceRequest | None:
        with self.database.begin() as connection:
            document = connection.execute(
                select(service_requests.c.document).where(service_requests.c.request_id == request_id)
            ).scalar_one_or_none()
        return ServiceRequest.model_validate(document) if document is not None else None

    def get(self, request_id: str) -> ServiceRequest:
        request = self.find(request_id)
        if request is None:
            raise NotFoundError(f"Service request {request_id} not found.")
        return request

    def save(
        self,
        request: ServiceRequest,
        *,
        expected_version: int,
        expected_status: RequestStatus,
    ) -> ServiceRequest:
        """Write `request` only if the stored row still has the expected version and status."""

        stored = request.model_copy(
            update={"pricing": settle(request.pricing), "version": expected_version + 1}
        )
        table = service_requests
        with self.database.begin() as connection:
            result = connection.execute(
                update(table)
                .where(
                    table.c.request_id == request.request_id,
                    table.c.version == expected_version,
                    table.c.status == expected_status.value,
                )
                .values(**_row_values(stored))
            )
            if result.rowcount == 1:
                return stored

            current = connection.execute(
                select(table.c.version, table.c.status).where(table.c.request_id == request.request_id)
            ).first()

        if current is None:
            raise NotFoundError(f"Service request {request.request_id} not found.")
        LOGGER.warning(
            "concurrent update rejected request=%s expected_version=%s stored_version=%s",
            request.request_id,
            expected_version,
            current.version,
        )
        raise ConcurrentUpdateError(
            f"Service request {request.request_id} changed since it was read.",
            details={
                "expected_version": expected_version,
                "expected_status": expected_status.value,
                "current_version": current.version,
                "current_status": current.status,
            },
        )

    def list_for_customer(self, customer_id: str) -> list[ServiceRequest]:
        return self._list(service_requests.c.customer_id == customer_id)

    def list_for_mechanic(self, mechanic_id: str) -> list[ServiceRequest]:
        return self._list(service_requests.c.mechanic_id == mechanic_id)

    def _list(self, condition: Any) -> list[ServiceRequest]:
        query = (
            select(service_requests.c.document)
            .where(condition)
            .order_by(service_requests.c.created_at.desc(), service_requests.c.request_id)
        )
        with self.database.begin() as connection:
            documents = connection.execute(query).scalars().all()
        return [ServiceRequest.model_validate(document) for document in documents]

    def find_pending_near(self, point: GeoPoint, *, max_distance_m: float) -> list[tuple[ServiceRequest, float]]:
        table = service_requests
        box = bounding_box(point, max_distance_m)
        query = select(table.c.latitude, table.c.longitude, table.c.document).where(
            table.c.status == RequestStatus.PENDING.value,
            table.c.latitude.between(box.min_latitude, box.max_latitude),
        )
        if not box.spans_all_longitudes:
            query = query.where(table.c.longitude.between(box.min_longitude, box.max_longitude))

        with self.database.begin() as connection:
            rows = connection.execute(query).all()

        ranked = rank_by_distance(
            origin=point,
            rows=[row.document for row in rows],
            latitudes=[row.latitude for row in rows],
            longitudes=[row.longitude for row in rows],
            max_distance_m=max_distance_m,
        )
        return [(ServiceRequest.model_validate(document), distance) for document, distance in ranked]

    def statistics(self, *, mechanic_id: str | None = None) -> RequestStatistics:
        query = REQUEST_STATISTICS_SQL
        params: dict[str, Any] = {}
        if mechanic_id is not None:
            query += "WHERE mechanic_id = :mechanic_id\n"
            params["mechanic_id"] = mechanic_id

        with self.database.begin() as connection:
            row = connection.execute(text(query), params).mappings().one()
        return RequestStatistics(
            total_requests=int(row["total_requests"]),
            completed_requests=int(row["completed_requests"]),
            cancelled_requests=int(row["cancelled_requests"]),
            total_earnings=round(float(row["total_earnings"]), 2),
            average_rating=_optional_round(row["average_rating"]),
            average_service_time=_optional_round(row["average_service_time"]),
        )
