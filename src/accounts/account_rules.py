# This module holds the invariants and derived values of account records as pure functions.
# It keeps behavior separate from the stored shape: every function takes a record part and returns a new one.
# Callers apply these before each save so derived fields stay consistent with their inputs.

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

from src.accounts.account_models import (
    MAX_PASSWORD_BYTES,
    MIN_PASSWORD_LENGTH,
    Account,
    CustomerAddress,
    DaySchedule,
    Mechanic,
    MechanicStatistics,
    RatingSummary,
    WeeklyAvailability,
)
from src.common.errors import ValidationError

WEEKDAY_FIELDS: tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


class BookingOutcome(str, Enum):
    ASSIGNED = "assigned"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def validate_password(raw_password: str) -> str:
    if not raw_password or len(raw_password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(raw_password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return raw_password


def normalize_default_address(addresses: list[CustomerAddress]) -> list[CustomerAddress]:
    """Exactly one default: the earliest flagged one, or the first address when none is flagged."""

    if not addresses:
        return []

    first_default = next((index for index, address in enumerate(addresses) if address.is_default), 0)
    return [
        address.model_copy(update={"is_default": index == first_default})
        for index, address in enumerate(addresses)
    ]


def completion_rate(completed: int, total: int) -> int:
    """completed / total x 100, rounded half-up; 0 when there are no bookings."""

    if total <= 0:
        return 0
    # Integer arithmetic keeps .5 boundaries from drifting under float rounding.
    return min(100, (200 * completed + total) // (2 * total))


def recompute_statistics(statistics: MechanicStatistics) -> MechanicStatistics:
    return statistics.model_copy(
        update={
            "completion_rate": completion_rate(statistics.completed_bookings, statistics.total_bookings),
        }
    )


def record_booking_outcome(
    statistics: MechanicStatistics,
    outcome: BookingOutcome,
    *,
    earnings: float = 0.0,
    response_time_minutes: int | None = None,
) -> MechanicStatistics:
    """Apply one booking event and recompute the completion rate."""

    updates: dict[str, Any] = {}
    if outcome is BookingOutcome.ASSIGNED:
        updates["total_bookings"] = statistics.total_bookings + 1
    elif outcome is BookingOutcome.COMPLETED:
        updates["completed_bookings"] = statistics.completed_bookings + 1
        updates["total_earnings"] = round(statistics.total_earnings + max(earnings, 0.0), 2)
    elif outcome is BookingOutcome.CANCELLED:
        updates["cancelled_bookings"] = statistics.cancelled_bookings + 1

    if response_time_minutes is not None:
        responded = statistics.completed_bookings + statistics.cancelled_bookings
        previous_total = statistics.average_response_time * responded
        updates["average_response_time"] = round((previous_total + response_time_minutes) / (responded + 1), 2)

    return recompute_statistics(statistics.model_copy(update=updates))


def apply_rating(summary: RatingSummary, rating: int) -> RatingSummary:
    if not (1 <= rating <= 5):
        raise ValidationError("Rating must be between 1 and 5")

    breakdown = dict(summary.breakdown)
    breakdown[str(rating)] = breakdown.get(str(rating), 0) + 1
    count = summary.count + 1
    average = round((summary.average * summary.count + rating) / count, 2)
    return summary.model_copy(update={"average": average, "count": count, "breakdown": breakdown})


def schedule_for_day(availability: WeeklyAvailability, day_of_week: int) -> DaySchedule:
    """Monday is 0, matching `datetime.weekday()`."""

    if not (0 <= day_of_week <= 6):
        raise ValidationError("day_of_week must be between 0 (Monday) and 6 (Sunday)")
    return getattr(availability, WEEKDAY_FIELDS[day_of_week])


def is_available_at(availability: WeeklyAvailability, *, day_of_week: int, time_of_day: str) -> bool:
    schedule = schedule_for_day(availability, day_of_week)
    if not schedule.is_available:
        return False
    return schedule.start_time <= time_of_day <= schedule.end_time


def is_available_on(availability: WeeklyAvailability, moment: datetime) -> bool:
    return is_available_at(
        availability,
        day_of_week=moment.weekday(),
        time_of_day=moment.strftime("%H:%M"),
    )


def update_day_schedule(availability: WeeklyAvailability, day: str, schedule: DaySchedule) -> WeeklyAvailability:
    normalized = day.strip().lower()
    if normalized not in WEEKDAY_FIELDS:
        raise ValidationError(f"Unknown day {day!r}; expected one of {', '.join(WEEKDAY_FIELDS)}")
    return availability.model_copy(update={normalized: schedule})


def age_on(date_of_birth: date | None, today: date) -> int | None:
    if date_of_birth is None:
        return None
    years = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        years -= 1
    return years


def public_profile(account: Account) -> dict[str, Any]:
    """Wire view without credential state or bank account numbers."""

    payload = account.to_wire(exclude={"security"})
    if isinstance(account, Mechanic):
        payload["bankDetails"].pop("accountNumber", None)
    return payload
