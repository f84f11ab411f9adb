# This module implements the account operations used by customers, mechanics and admins.
# It validates input into account records, applies account_rules invariants, and saves through the store.
# Lockout bookkeeping happens here so that each failed login is persisted before the error is raised.
# The clock is injected so lock expiry and reset-token lifetimes can be tested deterministically.

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable, Mapping
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Any

from pydantic.alias_generators import to_snake

from src.accounts.account_models import (
    Account,
    AccountKind,
    Customer,
    CustomerAddress,
    CustomerVehicle,
    DaySchedule,
    Mechanic,
    RateCard,
    SecurityState,
    VerificationStatus,
    utc_now,
)
from src.accounts.account_rules import (
    BookingOutcome,
    apply_rating,
    normalize_default_address,
    record_booking_outcome,
    update_day_schedule,
    validate_password,
)
from src.accounts.account_store import AccountStore, CustomerStatistics
from src.accounts.credentials import (
    DEFAULT_BCRYPT_ROUNDS,
    LockoutPolicy,
    TokenClaims,
    TokenSigner,
    digest_reset_token,
    hash_password,
    is_locked,
    new_reset_token,
    register_failed_login,
    register_successful_login,
    verify_password,
)
from src.common.documents import parse_document
from src.common.errors import AccountLocked, DuplicateKeyError, InvalidCredentials, NotFoundError, ValidationError
from src.pricing.pricing_config import MarketplacePolicy

LOGGER = logging.getLogger("accounts")

# Fields that only the system may set; profile input naming them is ignored.
PROTECTED_FIELDS: frozenset[str] = frozenset(
    {
        "id",
        "kind",
        "security",
        "rating",
        "statistics",
        "is_active",
        "is_verified",
        "verification_status",
        "created_at",
        "updated_at",
        "total_bookings",
        "total_spent",
    }
)


def new_account_id() -> str:
    return secrets.token_hex(12)


def _clean_profile(profile: Mapping[str, Any]) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for key, value in profile.items():
        field_name = to_snake(key)
        if field_name in PROTECTED_FIELDS:
            continue
        cleaned[field_name] = value
    return cleaned


class AccountService:
    """Account operations over an AccountStore."""

    def __init__(
        self,
        *,
        store: AccountStore,
        signer: TokenSigner,
        policy: MarketplacePolicy,
        bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.signer = signer
        self.policy = policy
        self.bcrypt_rounds = bcrypt_rounds
        self.clock = clock
        self.lockout = LockoutPolicy(
            max_attempts=policy.max_login_attempts,
            lock_duration=timedelta(hours=policy.lock_hours),
        )

    # Registration

    def register_customer(self, profile: Mapping[str, Any], raw_password: str) -> Customer:
        data = self._new_account_data(profile, raw_password)
        customer = parse_document(Customer, data)
        customer = customer.model_copy(update={"addresses": normalize_default_address(customer.addresses)})
        self.store.insert(customer)
        LOGGER.info("customer registered id=%s", customer.id)
        return customer

    def register_mechanic(self, profile: Mapping[str, Any], raw_password: str) -> Mechanic:
        data = self._new_account_data(profile, raw_password)
        data.update(is_active=False, is_verified=False, is_online=False)
        data.setdefault("pricing", RateCard(**asdict(self.policy.default_rate_card)))
        mechanic = parse_document(Mechanic, data)
        self.store.insert(mechanic)
        LOGGER.info("mechanic registered id=%s pending verification", mechanic.id)
        return mechanic

    def _new_account_data(self, profile: Mapping[str, Any], raw_password: str) -> dict[str, Any]:
        validate_password(raw_password)
        now = self.clock()
        data = _clean_profile(profile)
        data.update(
            id=new_account_id(),
            security=SecurityState(password_hash=hash_password(raw_password, rounds=self.bcrypt_rounds)),
            created_at=now,
            updated_at=now,
        )
        return data

    # Authentication

    def authenticate(self, kind: AccountKind, identifier: str, raw_password: str) -> Account:
        """Return the account when the password matches; failures are counted toward a lockout."""

        now = self.clock()
        account = self.store.find_by_identifier(kind, identifier)
        if account is None or not account.is_active:
            raise InvalidCredentials()

        security = account.security
        if is_locked(security, now):
            LOGGER.warning("login refused for locked account id=%s", account.id)
            raise AccountLocked(locked_until=security.lock_until, now=now)

        if not verify_password(raw_password, security.password_hash):
            failed = register_failed_login(security, now=now, policy=self.lockout)
            self.store.save(account.model_copy(update={"security": failed, "updated_at": now}))
            if failed.lock_until is not None and failed.lock_until != security.lock_until:
                LOGGER.warning(
                    "account locked id=%s attempts=%s until=%s",
                    account.id,
                    failed.login_attempts,
                    failed.lock_until.isoformat(),
                )
            raise InvalidCredentials()

        succeeded = register_successful_login(security, now=now)
        account = account.model_copy(update={"security": succeeded, "updated_at": now})
        self.store.save(account)
        LOGGER.info("login succeeded id=%s kind=%s", account.id, kind.value)
        return account

    def issue_token(self, account: Account) -> str:
        return self.signer.issue(account_id=account.id, role=account.kind, phone=account.phone, now=self.clock())

    def verify_token(self, token: str) -> TokenClaims:
        return self.signer.verify(token)

    def create_password_reset_token(self, kind: AccountKind, identifier: str) -> str:
        """Store a digest of a fresh reset token and return the raw token for delivery."""

        account = self.store.find_by_identifier(kind, identifier)
        if account is None:
            raise NotFoundError("No account found with that email or phone.")

        raw_token, token_hash = new_reset_token()
        now = self.clock()
        security = account.security.model_copy(
            update={
                "reset_password_token_hash": token_hash,
                "reset_password_expires_at": now + timedelta(minutes=self.policy.reset_token_ttl_minutes),
            }
        )
        self.store.save(account.model_copy(update={"security": security, "updated_at": now}))
        LOGGER.info("password reset token issued id=%s", account.id)
        return raw_token

    def reset_password(self, kind: AccountKind, raw_token: str, new_password: str) -> Account:
        validate_password(new_password)
        now = self.clock()
        account = self.store.find_by_reset_token(kind, digest_reset_token(raw_token))
        expires_at = account.security.reset_password_expires_at if account is not None else None
        if account is None or expires_at is None or expires_at <= now:
            raise InvalidCredentials("Invalid or expired reset token.")

        security = SecurityState(
            password_hash=hash_password(new_password, rounds=self.bcrypt_rounds),
            last_login=account.security.last_login,
        )
        account = account.model_copy(update={"security": security, "updated_at": now})
        self.store.save(account)
        LOGGER.info("password reset id=%s", account.id)
        return account

    # Profile upkeep

    def get_account(self, kind: AccountKind, account_id: str) -> Account:
        return self.store.get(kind, account_id)

    def get_mechanic(self, mechanic_id: str) -> Mechanic:
        return self.store.get(AccountKind.MECHANIC, mechanic_id)

    def get_customer(self, customer_id: str) -> Customer:
        return self.store.get(AccountKind.CUSTOMER, customer_id)

    def update_profile(self, kind: AccountKind, account_id: str, changes: Mapping[str, Any]) -> Account:
        account = self.store.get(kind, account_id)
        data = account.to_document()
        data.update(_clean_profile(changes))
        data["updated_at"] = self.clock()
        updated = parse_document(type(account), data)
        return self._save(updated)

    def update_availability(self, mechanic_id: str, day: str, schedule: Mapping[str, Any] | DaySchedule) -> Mechanic:
        mechanic = self.get_mechanic(mechanic_id)
        if not isinstance(schedule, DaySchedule):
            schedule = parse_document(DaySchedule, schedule)
        availability = update_day_schedule(mechanic.availability, day, schedule)
        return self._save(mechanic.model_copy(update={"availability": availability}))

    def set_online_status(self, mechanic_id: str, is_online: bool) -> Mechanic:
        mechanic = self.get_mechanic(mechanic_id)
        if is_online and not (mechanic.is_active and mechanic.is_verified):
            raise ValidationError("Only active, verified mechanics can go online.")
        LOGGER.info("mechanic online status id=%s online=%s", mechanic_id, is_online)
        return self._save(mechanic.model_copy(update={"is_online": is_online}))

    def deactivate(self, kind: AccountKind, account_id: str) -> Account:
        """Soft delete: the record stays so requests referencing it keep resolving."""

        account = self.store.get(kind, account_id)
        updates: dict[str, Any] = {"is_active": False}
        if isinstance(account, Mechanic):
            updates["is_online"] = False
        LOGGER.info("account deactivated id=%s kind=%s", account_id, kind.value)
        return self._save(account.model_copy(update=updates))

    def verify_mechanic(self, mechanic_id: str, *, approved: bool) -> Mechanic:
        mechanic = self.get_mechanic(mechanic_id)
        status = VerificationStatus.VERIFIED if approved else VerificationStatus.REJECTED
        updated = mechanic.model_copy(
            update={
                "verification_status": status,
                "is_verified": approved,
                "is_active": approved,
                "is_online": mechanic.is_online and approved,
            }
        )
        LOGGER.info("mechanic verification id=%s status=%s", mechanic_id, status.value)
        return self._save(updated)

    def add_vehicle(self, customer_id: str, vehicle: Mapping[str, Any] | CustomerVehicle) -> Customer:
        customer = self.get_customer(customer_id)
        if not isinstance(vehicle, CustomerVehicle):
            vehicle = parse_document(CustomerVehicle, vehicle)
        if any(existing.registration_number == vehicle.registration_number for existing in customer.vehicles):
            raise DuplicateKeyError(
                f"Vehicle {vehicle.registration_number} is already registered.",
                field="registration_number",
            )
        return self._save(customer.model_copy(update={"vehicles": [*customer.vehicles, vehicle]}))

    def add_address(self, customer_id: str, address: Mapping[str, Any] | CustomerAddress) -> Customer:
        customer = self.get_customer(customer_id)
        if not isinstance(address, CustomerAddress):
            address = parse_document(CustomerAddress, address)
        return self._save(customer.model_copy(update={"addresses": [*customer.addresses, address]}))

    # Hooks used by the request lifecycle

    def record_booking_outcome(
        self,
        mechanic_id: str,
        outcome: BookingOutcome,
        *,
        earnings: float = 0.0,
        response_time_minutes: int | None = None,
    ) -> Mechanic:
        mechanic = self.get_mechanic(mechanic_id)
        statistics = record_booking_outcome(
            mechanic.statistics,
            outcome,
            earnings=earnings,
            response_time_minutes=response_time_minutes,
        )
        return self._save(mechanic.model_copy(update={"statistics": statistics}))

    def record_customer_booking(self, customer_id: str) -> Customer:
        customer = self.get_customer(customer_id)
        return self._save(customer.model_copy(update={"total_bookings": customer.total_bookings + 1}))

    def record_customer_spend(self, customer_id: str, amount: float) -> Customer:
        customer = self.get_customer(customer_id)
        total_spent = round(customer.total_spent + max(amount, 0.0), 2)
        return self._save(customer.model_copy(update={"total_spent": total_spent}))

    def rate_account(self, kind: AccountKind, account_id: str, rating: int) -> Account:
        account = self.store.get(kind, account_id)
        return self._save(account.model_copy(update={"rating": apply_rating(account.rating, rating)}))

    def customer_statistics(self) -> CustomerStatistics:
        return self.store.customer_statistics()

    def _save(self, account: Account) -> Account:
        updates: dict[str, Any] = {"updated_at": self.clock()}
        if isinstance(account, Customer):
            updates["addresses"] = normalize_default_address(account.addresses)
        account = account.model_copy(update=updates)
        self.store.save(account)
        return account
