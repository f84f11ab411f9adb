# This module wraps the credential collaborators: bcrypt password hashing and JWT signing.
# It also owns the lockout policy that decides when repeated failures block authentication.
# Raw passwords and tokens never leave these functions except as hashes or signed strings.

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
from jose import JWTError, jwt

from src.accounts.account_models import AccountKind, SecurityState
from src.common.errors import InvalidCredentials

DEFAULT_BCRYPT_ROUNDS = 12


def hash_password(raw_password: str, *, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(raw_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(raw_password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(raw_password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


@dataclass(frozen=True)
class LockoutPolicy:
    max_attempts: int = 5
    lock_duration: timedelta = timedelta(hours=2)


def is_locked(security: SecurityState, now: datetime) -> bool:
    return security.lock_until is not None and security.lock_until > now


def register_failed_login(security: SecurityState, *, now: datetime, policy: LockoutPolicy) -> SecurityState:
    """Count one failure; reaching the limit locks the account for the policy duration."""

    attempts = security.login_attempts
    lock_until = security.lock_until
    if lock_until is not None and lock_until <= now:
        attempts = 0
        lock_until = None

    attempts += 1
    if attempts >= policy.max_attempts and lock_until is None:
        lock_until = now + policy.lock_duration

    return security.model_copy(update={"login_attempts": attempts, "lock_until": lock_until})


def register_successful_login(security: SecurityState, *, now: datetime) -> SecurityState:
    return security.model_copy(update={"login_attempts": 0, "lock_until": None, "last_login": now})


def new_reset_token() -> tuple[str, str]:
    """Return `(raw_token, stored_digest)`; only the digest is persisted."""

    raw_token = secrets.token_hex(20)
    return raw_token, digest_reset_token(raw_token)


def digest_reset_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class TokenClaims:
    account_id: str
    role: AccountKind
    phone: str
    expires_at: datetime


class TokenSigner:
    """Issues and verifies signed tokens carrying `{id, role, phone}`."""

    def __init__(self, *, secret: str, algorithm: str = "HS256", expire_minutes: int = 10080) -> None:
        if not secret:
            raise ValueError("Token signing secret must not be empty.")
        self._secret = secret
        self._algorithm = algorithm
        self._expire_minutes = expire_minutes

    def issue(self, *, account_id: str, role: AccountKind, phone: str, now: datetime) -> str:
        claims: dict[str, Any] = {
            "id": account_id,
            "role": role.value,
            "phone": phone,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=self._expire_minutes)).timestamp()),
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> TokenClaims:
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
            role = AccountKind(payload["role"])
            return TokenClaims(
                account_id=str(payload["id"]),
                role=role,
                phone=str(payload["phone"]),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=UTC),
            )
        except (JWTError, KeyError, ValueError) as exc:
            raise InvalidCredentials("Invalid or expired token.") from exc
