from __future__ import annotations

import asyncio

import httpx
import pytest

from calsync.clients.tenants import (
    HttpTenantProvisioner,
    InMemoryTenantProvisioner,
    TenantProvisioningError,
)


def _client(handler) -> HttpTenantProvisioner:
    return HttpTenantProvisioner(
        "https://tenants.example.test", "key", transport=httpx.MockTransport(handler)
    )


def test_http_create_tenant() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/tenants"
        assert request.headers["Authorization"] == "Bearer key"
        return httpx.Response(201, json={"tenantId": "t-1"})

    tenant = asyncio.run(_client(handler).create_tenant("lincoln-high.tenants.test"))

    assert tenant.tenant_id == "t-1"
    assert tenant.domain == "lincoln-high.tenants.test"


def test_http_delete_failure_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    with pytest.raises(TenantProvisioningError):
        asyncio.run(_client(handler).delete_tenant("t-1"))


def test_in_memory_rejects_duplicate_domain() -> None:
    provisioner = InMemoryTenantProvisioner()
    asyncio.run(provisioner.create_tenant("a.tenants.test"))

    with pytest.raises(TenantProvisioningError):
        asyncio.run(provisioner.create_tenant("a.tenants.test"))


def test_in_memory_records_deletions() -> None:
    provisioner = InMemoryTenantProvisioner()
    tenant = asyncio.run(provisioner.create_tenant("a.tenants.test"))

    asyncio.run(provisioner.delete_tenant(tenant.tenant_id))

    assert provisioner.deleted == [tenant.tenant_id]
    assert provisioner.live() == []
    with pytest.raises(TenantProvisioningError):
        asyncio.run(provisioner.delete_tenant(tenant.tenant_id))
