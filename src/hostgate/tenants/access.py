"""Authorization and billing collaborators.

Authentication happens upstream; these only answer "who owns this tenant" and
"does this tenant's plan include custom domains".
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass

from hostgate.tenants.models import TenantRecord


@dataclass(frozen=True)
class Actor:
    """An authenticated caller."""

    actor_id: str
    is_admin: bool = False


@dataclass(frozen=True)
class Entitlement:
    """Billing view of a tenant, consumed as a yes/no gate."""

    plan: str
    status: str
    allowed: bool


class Authorizer(ABC):
    @abstractmethod
    def resolve(self, actor_id: str) -> Actor:
        """Turn an authenticated actor id into an Actor with its admin flag."""

    @abstractmethod
    def owns(self, actor: Actor, record: TenantRecord) -> bool:
        """True if the actor is the tenant's owner."""


class BillingGate(ABC):
    @abstractmethod
    async def entitlement(self, record: TenantRecord) -> Entitlement: ...


class RecordOwnershipAuthorizer(Authorizer):
    """Ownership read from TenantRecord.owner_id; admins listed in configuration."""

    def __init__(self, admin_ids: Iterable[str] = ()) -> None:
        self.admin_ids = frozenset(admin_ids)

    def resolve(self, actor_id: str) -> Actor:
        return Actor(actor_id=actor_id, is_admin=actor_id in self.admin_ids)

    def owns(self, actor: Actor, record: TenantRecord) -> bool:
        return bool(actor.actor_id) and actor.actor_id == record.owner_id


class RecordBillingGate(BillingGate):
    """Plan and status read from the tenant record."""

    def __init__(self, entitled_plans: Iterable[str] = ("ENTERPRISE",)) -> None:
        self.entitled_plans = frozenset(p.upper() for p in entitled_plans)

    async def entitlement(self, record: TenantRecord) -> Entitlement:
        plan = record.subscription_plan.upper()
        status = record.subscription_status.upper()
        return Entitlement(
            plan=plan,
            status=status,
            allowed=plan in self.entitled_plans and status == "ACTIVE",
        )
