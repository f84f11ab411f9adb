"""DDL for account and service request tables."""

from __future__ import annotations

import logging

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
)
from sqlalchemy.engine import Engine

LOGGER = logging.getLogger("storage")

metadata = MetaData()

# Embedded sub-documents live in `document`; the scalar columns mirror the fields that
# queries filter or aggregate on and are rewritten from the document on every save.

customers = Table(
    "customers",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(254), nullable=False, unique=True),
    Column("phone", String(16), nullable=False, unique=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("is_verified", Boolean, nullable=False, default=False),
    Column("latitude", Float, nullable=True),
    Column("longitude", Float, nullable=True),
    Column("rating_average", Float, nullable=False, default=0.0),
    Column("vehicle_count", Integer, nullable=False, default=0),
    Column("reset_token_hash", String(64), nullable=True, index=True),
    Column("document", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Index("ix_customers_location", "latitude", "longitude"),
    Index("ix_customers_created_at", "created_at"),
)

mechanics = Table(
    "mechanics",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(254), nullable=False, unique=True),
    Column("phone", String(16), nullable=False, unique=True),
    Column("is_active", Boolean, nullable=False, default=False),
    Column("is_verified", Boolean, nullable=False, default=False),
    Column("is_online", Boolean, nullable=False, default=False),
    Column("latitude", Float, nullable=False),
    Column("longitude", Float, nullable=False),
    Column("rating_average", Float, nullable=False, default=0.0),
    Column("reset_token_hash", String(64), nullable=True, index=True),
    Column("document", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Index("ix_mechanics_location", "latitude", "longitude"),
    Index("ix_mechanics_flags", "is_active", "is_verified", "is_online"),
    Index("ix_mechanics_rating", "rating_average"),
)

vehicle_registrations = Table(
    "vehicle_registrations",
    metadata,
    Column("registration_number", String(32), primary_key=True),
    Column("customer_id", String(32), ForeignKey("customers.id"), nullable=False, index=True),
)

service_requests = Table(
    "service_requests",
    metadata,
    Column("request_id", String(32), primary_key=True),
    Column("customer_id", String(32), nullable=False, index=True),
    Column("mechanic_id", String(32), nullable=True, index=True),
    Column("status", String(16), nullable=False, index=True),
    Column("service_type", String(32), nullable=False, index=True),
    Column("latitude", Float, nullable=False),
    Column("longitude", Float, nullable=False),
    Column("final_cost", Float, nullable=False, default=0.0),
    Column("customer_rating", Integer, nullable=True),
    Column("service_time", Integer, nullable=True),
    Column("version", Integer, nullable=False, default=1),
    Column("document", JSON, nullable=False),
    Column("scheduled_for", DateTime(timezone=True), nullable=False, index=True),
    Column("created_at", DateTime(timezone=True), nullable=False, index=True),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Index("ix_service_requests_location", "latitude", "longitude"),
)


def apply_marketplace_ddl(engine: Engine) -> None:
    """Create all tables and indexes that do not exist yet."""

    metadata.create_all(engine)
    LOGGER.info("marketplace tables ensured: %s", ", ".join(sorted(metadata.tables)))
