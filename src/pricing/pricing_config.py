# This file defines the marketplace policy shared by pricing and account code.
# The loader merges YAML defaults with environment overrides and validates every bound.
# The policy object is frozen and reaches services through the application context.

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_POLICY_PATH = PROJECT_ROOT / "configs" / "marketplace_policy.yaml"


def _load_yaml(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as handle:
        loaded = yaml.safe_load(handle) or {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Config at {path} must be a mapping, got: {type(loaded).__name__}")
    return dict(loaded)


def _env_str(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


@dataclass(frozen=True)
class DefaultRateCard:
    base_fee: float = 100.0
    per_km_charge: float = 10.0
    hourly_rate: float = 200.0
    emergency_multiplier: float = 1.5


@dataclass(frozen=True)
class MarketplacePolicy:
    policy_version: str = "mp1"
    currency: str = "INR"
    tax_rate: float = 0.18
    default_rate_card: DefaultRateCard = field(default_factory=DefaultRateCard)
    max_login_attempts: int = 5
    lock_hours: float = 2.0
    reset_token_ttl_minutes: int = 10
    default_search_radius_m: float = 10000.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "policy_version": self.policy_version,
            "currency": self.currency,
            "tax_rate": self.tax_rate,
            "default_rate_card": {
                "base_fee": self.default_rate_card.base_fee,
                "per_km_charge": self.default_rate_card.per_km_charge,
                "hourly_rate": self.default_rate_card.hourly_rate,
                "emergency_multiplier": self.default_rate_card.emergency_multiplier,
            },
            "max_login_attempts": self.max_login_attempts,
            "lock_hours": self.lock_hours,
            "reset_token_ttl_minutes": self.reset_token_ttl_minutes,
            "default_search_radius_m": self.default_search_radius_m,
        }


def validate_policy(policy: MarketplacePolicy) -> MarketplacePolicy:
    if not (0 <= policy.tax_rate <= 1):
        raise ValueError("tax_rate must be in [0, 1]")
    if policy.default_rate_card.emergency_multiplier < 1:
        raise ValueError("emergency_multiplier must be >= 1")
    if policy.default_rate_card.base_fee < 0 or policy.default_rate_card.per_km_charge < 0:
        raise ValueError("rate card fees must be nonnegative")
    if policy.max_login_attempts <= 0:
        raise ValueError("max_login_attempts must be > 0")
    if policy.lock_hours <= 0:
        raise ValueError("lock_hours must be > 0")
    if policy.reset_token_ttl_minutes <= 0:
        raise ValueError("reset_token_ttl_minutes must be > 0")
    if policy.default_search_radius_m <= 0:
        raise ValueError("default_search_radius_m must be > 0")
    if len(policy.currency) != 3:
        raise ValueError("currency must be a 3-letter ISO code")
    return policy


def load_marketplace_policy(*, config_path: str | Path | None = None) -> MarketplacePolicy:
    path = Path(config_path or _env_str("MARKETPLACE_POLICY_PATH") or DEFAULT_POLICY_PATH)
    cfg = _load_yaml(path)
    rate_cfg = dict(cfg.get("default_rate_card", {}))
    lockout_cfg = dict(cfg.get("lockout", {}))
    reset_cfg = dict(cfg.get("password_reset", {}))
    locator_cfg = dict(cfg.get("locator", {}))

    rate_card = DefaultRateCard(
        base_fee=_env_float("POLICY_BASE_FEE", float(rate_cfg.get("base_fee", 100))),
        per_km_charge=_env_float("POLICY_PER_KM_CHARGE", float(rate_cfg.get("per_km_charge", 10))),
        hourly_rate=_env_float("POLICY_HOURLY_RATE", float(rate_cfg.get("hourly_rate", 200))),
        emergency_multiplier=_env_float(
            "POLICY_EMERGENCY_MULTIPLIER", float(rate_cfg.get("emergency_multiplier", 1.5))
        ),
    )

    policy = MarketplacePolicy(
        policy_version=str(_env_str("POLICY_VERSION", str(cfg.get("policy_version", "mp1")))),
        currency=str(_env_str("POLICY_CURRENCY", str(cfg.get("currency", "INR")))).upper(),
        tax_rate=_env_float("POLICY_TAX_RATE", float(cfg.get("tax_rate", 0.18))),
        default_rate_card=rate_card,
        max_login_attempts=_env_int(
            "POLICY_MAX_LOGIN_ATTEMPTS", int(lockout_cfg.get("max_login_attempts", 5))
        ),
        lock_hours=_env_float("POLICY_LOCK_HOURS", float(lockout_cfg.get("lock_hours", 2))),
        reset_token_ttl_minutes=_env_int(
            "POLICY_RESET_TOKEN_TTL_MINUTES", int(reset_cfg.get("token_ttl_minutes", 10))
        ),
        default_search_radius_m=_env_float(
            "POLICY_DEFAULT_SEARCH_RADIUS_M", float(locator_cfg.get("default_search_radius_m", 10000))
        ),
    )
    return validate_policy(policy)
