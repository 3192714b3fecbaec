"""Storage for tenant domain records.

Two backends share one interface: an in-memory store for tests and single
process tools, and a JSON file store suitable for self-hosted deployments.

Storage file format (tenants.json):
    {
        "tenants": {
            "t-123": {
                "tenant_id": "t-123",
                "slug": "mytenant",
                "owner_id": "u-1",
                "custom_domain": "shop.mycompany.com",
                "custom_domain_status": "PENDING",
                ...
            }
        }
    }

Both backends enforce global uniqueness of custom_domain inside save(), under
the store lock, so two concurrent claims of the same hostname cannot both land.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path

import structlog

from hostgate.core.errors import Conflict
from hostgate.tenants.models import DomainStatus, SSLStatus, TenantRecord

logger = structlog.get_logger()


class TenantStore(ABC):
    """Read/write access to tenant records keyed by tenant id.

    Records handed out are copies; changes only take effect through save().
    """

    @abstractmethod
    async def get(self, tenant_id: str) -> TenantRecord | None: ...

    @abstractmethod
    async def save(self, record: TenantRecord) -> None:
        """Persist a record.

        Raises:
            Conflict: If another tenant already holds record.custom_domain.
        """

    @abstractmethod
    async def list_all(self) -> list[TenantRecord]: ...

    async def find_by_domain(
        self, domain: str, exclude_tenant_id: str | None = None
    ) -> TenantRecord | None:
        """Find the tenant holding a custom domain, optionally ignoring one tenant."""
        domain = domain.lower()
        for record in await self.list_all():
            if record.tenant_id == exclude_tenant_id:
                continue
            if record.custom_domain and record.custom_domain.lower() == domain:
                return record
        return None

    async def list_by_domain_status(self, *statuses: DomainStatus) -> list[TenantRecord]:
        return [
            r
            for r in await self.list_all()
            if r.custom_domain and r.custom_domain_status in statuses
        ]

    async def list_by_ssl_status(self, *statuses: SSLStatus) -> list[TenantRecord]:
        return [
            r
            for r in await self.list_all()
            if r.custom_domain and r.ssl_certificate_status in statuses
        ]


def _check_unique(records: dict[str, TenantRecord], record: TenantRecord) -> None:
    if not record.custom_domain:
        return
    wanted = record.custom_domain.lower()
    for other in records.values():
        if other.tenant_id == record.tenant_id or not other.custom_domain:
            continue
        if other.custom_domain.lower() == wanted:
            raise Conflict(
                "This domain is already claimed by another store",
                details={"domain": record.custom_domain},
            )


class MemoryTenantStore(TenantStore):
    """Process-local store."""

    def __init__(self, records: list[TenantRecord] | None = None) -> None:
        self._lock = asyncio.Lock()
        self._records: dict[str, TenantRecord] = {
            r.tenant_id: r.clone() for r in records or []
        }

    async def get(self, tenant_id: str) -> TenantRecord | None:
        async with self._lock:
            record = self._records.get(tenant_id)
            return record.clone() if record else None

    async def save(self, record: TenantRecord) -> None:
        async with self._lock:
            _check_unique(self._records, record)
            self._records[record.tenant_id] = record.clone()

    async def list_all(self) -> list[TenantRecord]:
        async with self._lock:
            return [r.clone() for r in self._records.values()]


class JSONTenantStore(TenantStore):
    """JSON file-based storage for tenant records.

    Thread-safe via asyncio locks. Suitable for self-hosted deployments with
    moderate tenant counts; a database-backed store can replace it behind the
    same interface.
    """

    def __init__(self, storage_path: str | Path = "tenants.json") -> None:
        """Initialize tenant store.

        Args:
            storage_path: Path to the JSON storage file.
        """
        self.storage_path = Path(storage_path)
        self._lock = asyncio.Lock()
        self._cache: dict[str, TenantRecord] | None = None

    async def _load(self) -> dict[str, TenantRecord]:
        """Load records from storage file."""
        if self._cache is not None:
            return self._cache

        if not self.storage_path.exists():
            self._cache = {}
            return self._cache

        try:
            content = await asyncio.to_thread(self.storage_path.read_text, encoding="utf-8")
            data = json.loads(content)
            self._cache = {
                tenant_id: TenantRecord.from_dict(item)
                for tenant_id, item in data.get("tenants", {}).items()
            }
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            # A corrupt store must not be silently replaced by an empty one.
            raise RuntimeError(f"Tenant store {self.storage_path} is unreadable: {e}") from e

        return self._cache

    async def _save(self, records: dict[str, TenantRecord]) -> None:
        """Write records to storage file atomically."""
        data = {"tenants": {tid: r.to_dict() for tid, r in records.items()}}
        content = json.dumps(data, indent=2)
        tmp_path = self.storage_path.with_suffix(self.storage_path.suffix + ".tmp")

        def write() -> None:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(content, encoding="utf-8")
            tmp_path.replace(self.storage_path)

        await asyncio.to_thread(write)
        self._cache = records

    async def get(self, tenant_id: str) -> TenantRecord | None:
        async with self._lock:
            records = await self._load()
            record = records.get(tenant_id)
            return record.clone() if record else None

    async def save(self, record: TenantRecord) -> None:
        async with self._lock:
            records = await self._load()
            _check_unique(records, record)
            updated = dict(records)
            updated[record.tenant_id] = record.clone()
            await self._save(updated)
        logger.debug("Tenant record saved", tenant_id=record.tenant_id)

    async def list_all(self) -> list[TenantRecord]:
        async with self._lock:
            records = await self._load()
            return [r.clone() for r in records.values()]

    def invalidate_cache(self) -> None:
        """Force reload from disk on next access."""
        self._cache = None
