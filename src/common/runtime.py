"""
Application context wiring.
It builds the database handle and the services around it, then hands them to callers as one object.
Nothing is created at import time; the context owns startup and shutdown of its resources.
"""

from __future__ import annotations

import logging
import signal
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from types import FrameType

from src.accounts.account_models import utc_now
from src.accounts.account_service import AccountService
from src.accounts.account_store import AccountStore
from src.accounts.credentials import TokenSigner
from src.common.db import Database
from src.common.settings import Settings, get_settings
from src.locator.mechanic_locator import MechanicLocator
from src.pricing.pricing_config import MarketplacePolicy, load_marketplace_policy
from src.service_requests.request_service import RequestService
from src.service_requests.request_store import RequestStore
from src.storage.ddl import apply_marketplace_ddl

LOGGER = logging.getLogger("runtime")


@dataclass
class AppContext:
    settings: Settings
    policy: MarketplacePolicy
    database: Database
    accounts: AccountService
    requests: RequestService
    locator: MechanicLocator

    def close(self) -> None:
        self.database.dispose()


def build_app_context(
    *,
    settings: Settings | None = None,
    policy: MarketplacePolicy | None = None,
    clock: Callable[[], datetime] = utc_now,
    apply_ddl: bool = False,
) -> AppContext:
    """Connect the database and assemble stores and services around it."""

    settings = settings or get_settings()
    policy = policy or load_marketplace_policy(config_path=settings.MARKETPLACE_POLICY_PATH)

    database = Database(
        database_url=settings.DATABASE_URL,
        pool_size=settings.DB_POOL_SIZE,
        connect_timeout_seconds=settings.DB_CONNECT_TIMEOUT_SECONDS,
    )
    engine = database.connect()
    if apply_ddl:
        apply_marketplace_ddl(engine)

    account_store = AccountStore(database=database)
    request_store = RequestStore(database=database)
    signer = TokenSigner(
        secret=settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
        expire_minutes=settings.JWT_EXPIRE_MINUTES,
    )
    accounts = AccountService(
        store=account_store,
        signer=signer,
        policy=policy,
        bcrypt_rounds=settings.BCRYPT_ROUNDS,
        clock=clock,
    )
    requests = RequestService(store=request_store, accounts=accounts, policy=policy, clock=clock)
    locator = MechanicLocator(accounts=account_store, requests=request_store, policy=policy)
    LOGGER.info("app context ready env=%s policy_version=%s", settings.ENV, policy.policy_version)
    return AppContext(
        settings=settings,
        policy=policy,
        database=database,
        accounts=accounts,
        requests=requests,
        locator=locator,
    )


@contextmanager
def open_app_context(
    *,
    settings: Settings | None = None,
    policy: MarketplacePolicy | None = None,
    clock: Callable[[], datetime] = utc_now,
    apply_ddl: bool = False,
) -> Iterator[AppContext]:
    """Yield a ready context and release its resources on exit."""

    context = build_app_context(settings=settings, policy=policy, clock=clock, apply_ddl=apply_ddl)
    try:
        yield context
    finally:
        context.close()


def install_shutdown_handlers(context: AppContext) -> None:
    """Dispose the context on SIGINT or SIGTERM, then exit."""

    def _handle(signum: int, _frame: FrameType | None) -> None:
        LOGGER.info("shutdown signal received signal=%s", signal.Signals(signum).name)
        context.close()
        sys.exit(0)

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)
