"""Tenant domain records, storage and access collaborators."""

from hostgate.tenants.access import (
    Actor,
    Authorizer,
    BillingGate,
    Entitlement,
    RecordBillingGate,
    RecordOwnershipAuthorizer,
)
from hostgate.tenants.models import DomainStatus, SSLStatus, TenantRecord
from hostgate.tenants.store import JSONTenantStore, MemoryTenantStore, TenantStore

__all__ = [
    "Actor",
    "Authorizer",
    "BillingGate",
    "DomainStatus",
    "Entitlement",
    "JSONTenantStore",
    "MemoryTenantStore",
    "RecordBillingGate",
    "RecordOwnershipAuthorizer",
    "SSLStatus",
    "TenantRecord",
    "TenantStore",
]
