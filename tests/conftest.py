"""
Shared test configuration.
It asserts expected behavior and guards against regressions in the corresponding component.
These tests are executed by `pytest` locally and in CI and should remain deterministic.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from src.accounts.account_service import AccountService  # noqa: E402
from src.accounts.account_store import AccountStore  # noqa: E402
from src.accounts.credentials import TokenSigner  # noqa: E402
from src.common.db import Database  # noqa: E402
from src.locator.mechanic_locator import MechanicLocator  # noqa: E402
from src.pricing.pricing_config import MarketplacePolicy  # noqa: E402
from src.service_requests.request_service import RequestService  # noqa: E402
from src.service_requests.request_store import RequestStore  # noqa: E402
from src.storage.ddl import apply_marketplace_ddl  # noqa: E402
from tests.support import TEST_BCRYPT_ROUNDS, TEST_JWT_SECRET, FakeClock  # noqa: E402


@pytest.fixture(autouse=True)
def base_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure required environment variables are present during tests."""

    defaults = {
        "PROJECT_NAME": "test-project",
        "ENV": "test",
        "LOG_LEVEL": "INFO",
        "DATABASE_URL": "sqlite+pysqlite://",
        "JWT_SECRET": TEST_JWT_SECRET,
        "BCRYPT_ROUNDS": str(TEST_BCRYPT_ROUNDS),
    }

    for key, value in defaults.items():
        if os.getenv(key) is None:
            monkeypatch.setenv(key, value)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy() -> MarketplacePolicy:
    return MarketplacePolicy()


@pytest.fixture
def database() -> Iterator[Database]:
    db = Database(database_url="sqlite+pysqlite://")
    apply_marketplace_ddl(db.connect())
    yield db
    db.dispose()


@pytest.fixture
def account_store(database: Database) -> AccountStore:
    return AccountStore(database=database)


@pytest.fixture
def request_store(database: Database) -> RequestStore:
    return RequestStore(database=database)


@pytest.fixture
def account_service(account_store: AccountStore, policy: MarketplacePolicy, clock: FakeClock) -> AccountService:
    return AccountService(
        store=account_store,
        signer=TokenSigner(secret=TEST_JWT_SECRET),
        policy=policy,
        bcrypt_rounds=TEST_BCRYPT_ROUNDS,
        clock=clock,
    )


@pytest.fixture
def request_service(
    request_store: RequestStore,
    account_service: AccountService,
    policy: MarketplacePolicy,
    clock: FakeClock,
) -> RequestService:
    return RequestService(store=request_store, accounts=account_service, policy=policy, clock=clock)


@pytest.fixture
def locator(account_store: AccountStore, request_store: RequestStore, policy: MarketplacePolicy) -> MechanicLocator:
    return MechanicLocator(accounts=account_store, requests=request_store, policy=policy)
