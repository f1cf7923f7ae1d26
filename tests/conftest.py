from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure repo root is on sys.path so `import calsync` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from calsync.clients import scheduling, tenants  # noqa: E402
from calsync.main import app  # noqa: E402
from calsync.services import token_service, wiring  # noqa: E402
from calsync.services.identity_resolver import DefaultAdministrator  # noqa: E402
from calsync.services.task_queue import task_queue  # noqa: E402
from tests.fakes import (  # noqa: E402
    ADMIN_EMAIL,
    RecordingSchedulingClient,
    RecordingTenantProvisioner,
)


@pytest.fixture(autouse=True)
def reset_registry() -> None:
    """Clear the in-memory organization, staff and booking repos."""
    wiring.org_repo._by_id.clear()
    wiring.org_repo._by_slug.clear()
    wiring.staff_repo._by_id.clear()
    wiring.booking_repo._by_id.clear()


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues between tests."""
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def platform(monkeypatch: pytest.MonkeyPatch) -> RecordingSchedulingClient:
    """Fresh fake scheduling platform with the default administrator on it."""
    fake = RecordingSchedulingClient()
    admin = asyncio.run(fake.create_managed_user(ADMIN_EMAIL, "admin", "Admin"))
    fake.calls.clear()
    monkeypatch.setattr(scheduling, "scheduling_client", fake)
    monkeypatch.setattr(wiring, "default_admin", DefaultAdministrator(ADMIN_EMAIL))
    fake.admin_id = admin.id
    return fake


@pytest.fixture(autouse=True)
def tenant_service(monkeypatch: pytest.MonkeyPatch) -> RecordingTenantProvisioner:
    fake = RecordingTenantProvisioner()
    monkeypatch.setattr(tenants, "tenant_provisioner", fake)
    return fake


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


@pytest.fixture
def token() -> str:
    """Token with default role (user)."""
    return mint_token()


@pytest.fixture
def admin_token() -> str:
    """Token with admin role."""
    return mint_token(username="test-admin", roles=["admin"])


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
