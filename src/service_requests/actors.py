# This module defines who can act on a service request.
# An actor pairs an account reference with its kind in one tagged value, discriminated on `kind`.
# History entries and cancellations accept any actor; messages accept only customers and mechanics.

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import Field

from src.accounts.account_models import AccountKind
from src.common.documents import DocumentModel


class CustomerActor(DocumentModel):
    kind: Literal["customer"] = "customer"
    id: str = Field(min_length=1)


class MechanicActor(DocumentModel):
    kind: Literal["mechanic"] = "mechanic"
    id: str = Field(min_length=1)


class AdminActor(DocumentModel):
    kind: Literal["admin"] = "admin"
    id: str = Field(min_length=1)


Actor = Annotated[CustomerActor | MechanicActor | AdminActor, Field(discriminator="kind")]
MessageSender = Annotated[CustomerActor | MechanicActor, Field(discriminator="kind")]

_ACTOR_TYPES: dict[AccountKind, type[CustomerActor | MechanicActor | AdminActor]] = {
    AccountKind.CUSTOMER: CustomerActor,
    AccountKind.MECHANIC: MechanicActor,
    AccountKind.ADMIN: AdminActor,
}


def actor_for(kind: AccountKind | str, actor_id: str) -> CustomerActor | MechanicActor | AdminActor:
    return _ACTOR_TYPES[AccountKind(kind)](id=actor_id)


def account_kind(actor: CustomerActor | MechanicActor | AdminActor) -> AccountKind:
    return AccountKind(actor.kind)
