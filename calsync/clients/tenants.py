"""Tenant provisioning collaborator.

The only thing the orchestrator needs from it is a resource it can create
in step 2 of provisioning and delete again when a later step fails.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import httpx

from calsync.core.config import SETTINGS

logger = logging.getLogger(__name__)


class TenantProvisioningError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class Tenant:
    tenant_id: str
    domain: str


@runtime_checkable
class TenantProvisioner(Protocol):
    async def create_tenant(self, domain: str) -> Tenant: ...
    async def delete_tenant(self, tenant_id: str) -> None: ...


class InMemoryTenantProvisioner:
    """Keeps live tenants plus a log of deletions.

    The deletion log lets tests assert a tenant was removed exactly once.
    """

    def __init__(self) -> None:
        self._tenants: dict[str, Tenant] = {}
        self.deleted: list[str] = []

    async def create_tenant(self, domain: str) -> Tenant:
        if any(t.domain == domain for t in self._tenants.values()):
            raise TenantProvisioningError(f"domain {domain!r} already provisioned")
        tenant = Tenant(tenant_id=str(uuid.uuid4()), domain=domain)
        self._tenants[tenant.tenant_id] = tenant
        return tenant

    async def delete_tenant(self, tenant_id: str) -> None:
        if self._tenants.pop(tenant_id, None) is None:
            raise TenantProvisioningError(f"tenant {tenant_id} not found")
        self.deleted.append(tenant_id)

    def live(self) -> list[Tenant]:
        return list(self._tenants.values())


class HttpTenantProvisioner:
    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_tenant(self, domain: str) -> Tenant:
        try:
            resp = await self._client.post("/tenants", json={"domain": domain})
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Tenant creation failed domain=%s: %r", domain, exc)
            raise TenantProvisioningError(f"create_tenant {domain}: {exc!r}") from exc
        data = resp.json()
        return Tenant(tenant_id=str(data["tenantId"]), domain=domain)

    async def delete_tenant(self, tenant_id: str) -> None:
        try:
            resp = await self._client.delete(f"/tenants/{tenant_id}")
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Tenant deletion failed tenant_id=%s: %r", tenant_id, exc)
            raise TenantProvisioningError(f"delete_tenant {tenant_id}: {exc!r}") from exc


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if SETTINGS.tenant_api_url:
    tenant_provisioner: TenantProvisioner = HttpTenantProvisioner(
        SETTINGS.tenant_api_url,
        SETTINGS.tenant_api_key,
        timeout_seconds=SETTINGS.scheduling_timeout_seconds,
    )
else:
    tenant_provisioner = InMemoryTenantProvisioner()
