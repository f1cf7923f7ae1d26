"""Provisioning saga tests.

The fakes record every external call, so the tests assert both the end
state (registry row, tenant, team, membership) and which side effects
happened on the way.
"""

from __future__ import annotations

import asyncio

import pytest

from calsync.clients.scheduling import ExternalTransportError
from calsync.clients.tenants import TenantProvisioningError
from calsync.core.errors import (
    CompensationFailed,
    ConfigurationError,
    DuplicateSlug,
    MembershipFailed,
    TeamProvisioningFailed,
    TenantProvisioningFailed,
)
from calsync.models.external import MembershipRole
from calsync.models.organization import OrganizationDraft
from calsync.repos.org_repo import SlugTakenError
from calsync.services.identity_resolver import DefaultAdministrator, IdentityResolver
from calsync.services.membership_reconciler import MembershipReconciler
from calsync.services.provisioning import ProvisioningSaga
from tests.fakes import (
    ADMIN_EMAIL,
    FlakyOrgRepo,
    RecordingSchedulingClient,
    RecordingTenantProvisioner,
)

LINCOLN = OrganizationDraft(name="Lincoln High", slug="lincoln-high")


def _saga(
    platform: RecordingSchedulingClient,
    tenants: RecordingTenantProvisioner,
    org_repo: FlakyOrgRepo,
    admin: DefaultAdministrator | None = None,
) -> ProvisioningSaga:
    return ProvisioningSaga(
        org_repo=org_repo,
        tenants=tenants,
        client=platform,
        resolver=IdentityResolver(platform),
        reconciler=MembershipReconciler(platform),
        default_admin=admin or DefaultAdministrator(ADMIN_EMAIL),
        tenant_domain_suffix="tenants.test",
    )


@pytest.fixture
def org_repo() -> FlakyOrgRepo:
    return FlakyOrgRepo()


def _stored(org_repo: FlakyOrgRepo, slug: str = "lincoln-high"):
    return asyncio.run(org_repo.get_by_slug(slug))


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


def test_lincoln_high_is_linked_to_team_42_with_owner(
    platform: RecordingSchedulingClient,
    tenant_service: RecordingTenantProvisioner,
    org_repo: FlakyOrgRepo,
) -> None:
    platform.next_team_id = 42
    saga = _saga(platform, tenant_service, org_repo)

    org = asyncio.run(saga.provision_organization(LINCOLN))

    assert org.external_team_id == 42
    assert org.status == "active"
    assert platform.called("create_team") == [("Lincoln High", "lincoln-high")]
    assert platform.called("create_membership") == [
        (42, platform.admin_id, MembershipRole.OWNER)
    ]
    assert _stored(org_repo) == org


def test_success_leaves_tenant_and_owner_in_place(
    platform: RecordingSchedulingClient,
    tenant_service: RecordingTenantProvisioner,
    org_repo: FlakyOrgRepo,
) -> None:
    org = asyncio.run(_saga(platform, tenant_service, org_repo).provision_organization(LINCOLN))

    assert org.tenant_id is not None
    assert [t.tenant_id for t in tenant_service.live()] == [org.tenant_id]
    assert tenant_service.called("create_tenant") == [("lincoln-high.tenants.test",)]
    membership = platform.membership(org.external_team_id, platform.admin_id)
    assert membership is not None
    assert membership.role is MembershipRole.OWNER


def test_same_slug_twice_is_rejected_without_external_calls(
    platform: RecordingSchedulingClient,
    tenant_service: RecordingTenantProvisioner,
    org_repo: FlakyOrgRepo,
) -> None:
    saga = _saga(platform, tenant_service, org_repo)
    asyncio.run(saga.provision_organization(LINCOLN))
    platform.calls.clear()
    tenant_service.calls.clear()

    with pytest.raises(DuplicateSlug) as exc_info:
        asyncio.run(saga.provision_organization(LINCOLN))

    assert exc_info.value.slug == "lincoln-high"
    assert platform.calls == []
    assert tenant_service.calls == []


# ---------------------------------------------------------------------------
# Failures and compensation
# ---------------------------------------------------------------------------


def test_tenant_failure_makes_no_platform_calls(
    platform: RecordingSchedulingClient,
    tenant_service: RecordingTenantProvisioner,
    org_repo: FlakyOrgRepo,
) -> None:
    tenant_service.fail_next("create_tenant", TenantProvisioningError("503"))

    with pytest.raises(TenantProvisioningFailed):
        asyncio.run(_saga(platform, tenant_service, org_repo).provision_organization(LINCOLN))

    assert platform.calls == []
    assert _stored(org_repo) is None


def test_registry_insert_failure_releases_tenant(
    platform: RecordingSchedulingClient,
    tenant_service: RecordingTenantProvisioner,
    org_repo: FlakyOrgRepo,
) -> None:
    org_repo.fail_next("add", RuntimeError("connection lost"))

    with pytest.raises(RuntimeError, match="connection lost"):
        asyncio.run(_saga(platform, tenant_service, org_repo).provision_organization(LINCOLN))

    assert len(tenant_service.deleted) == 1
    assert tenant_service.live() == []
    assert platform.called("create_team") == []


def test_concurrent_insert_of_same_slug_is_duplicate(
    platform: RecordingSchedulingClient,
    tenant_service: RecordingTenantProvisioner,
    org_repo: FlakyOrgRepo,
) -> None:
    org_repo.fail_next("add", SlugTakenError("lincoln-high"))

    with pytest.raises(DuplicateSlug):
        asyncio.run(_saga(platform, tenant_service, org_repo).provision_organization(LINCOLN))

    assert len(tenant_service.deleted) == 1
    assert tenant_service.live() == []


def test_team_failure_deletes_tenant_once(
    platform: RecordingSchedulingClient,
    tenant_service: RecordingTenantProvisioner,
    org_repo: FlakyOrgRepo,
) -> None:
    platform.fail_next("create_team", ExternalTransportError("timed out"))

    with pytest.raises(TeamProvisioningFailed):
        asyncio.run(_saga(platform, tenant_service, org_repo).provision_organization(LINCOLN))

    assert len(tenant_service.deleted) == 1
    assert tenant_service.live() == []
    org = _stored(org_repo)
    assert org.status == "pending"
    assert org.tenant_id is None
    assert org.external_team_id is None


def test_link_failure_deletes_team_and_tenant_once(
    platform: RecordingSchedulingClient,
    tenant_service: RecordingTenantProvisioner,
    org_repo: FlakyOrgRepo,
) -> None:
    org_repo.fail_next("set_external_team", RuntimeError("db down"))

    with pytest.raises(RuntimeError, match="db down"):
        asyncio.run(_saga(platform, tenant_service, org_repo).provision_organization(LINCOLN))

    assert len(platform.called("delete_team")) == 1
    assert platform.team_ids() == []
    assert len(tenant_service.deleted) == 1
    assert _stored(org_repo).external_team_id is None


def test_owner_grant_failure_rolls_everything_back(
    platform: RecordingSchedulingClient,
    tenant_service: RecordingTenantProvisioner,
    org_repo: FlakyOrgRepo,
) -> None:
    platform.fail_next("create_membership", ExternalTransportError("timed out"))

    with pytest.raises(MembershipFailed):
        asyncio.run(_saga(platform, tenant_service, org_repo).provision_organization(LINCOLN))

    assert len(tenant_service.deleted) == 1
    assert platform.team_ids() == []
    org = _stored(org_repo)
    # Never left looking provisioned without its owner
    assert org.external_team_id is None
    assert org.status == "pending"


def test_missing_default_admin_is_configuration_error(
    platform: RecordingSchedulingClient,
    tenant_service: RecordingTenantProvisioner,
    org_repo: FlakyOrgRepo,
) -> None:
    saga = _saga(
        platform, tenant_service, org_repo, admin=DefaultAdministrator("ghost@calsync.test")
    )

    with pytest.raises(ConfigurationError):
        asyncio.run(saga.provision_organization(LINCOLN))

    assert len(tenant_service.deleted) == 1
    assert platform.team_ids() == []
    assert platform.called("create_managed_user") == []


def test_compensation_failure_is_reported(
    platform: RecordingSchedulingClient,
    tenant_service: RecordingTenantProvisioner,
    org_repo: FlakyOrgRepo,
) -> None:
    platform.fail_next("create_membership", ExternalTransportError("timed out"))
    tenant_service.fail_next("delete_tenant", TenantProvisioningError("503"))

    with pytest.raises(CompensationFailed) as exc_info:
        asyncio.run(_saga(platform, tenant_service, org_repo).provision_organization(LINCOLN))

    err = exc_info.value
    assert isinstance(err.original, MembershipFailed)
    assert [name for name, _ in err.failures] == ["acquire_tenant"]
    # The team was still removed even though the tenant could not be
    assert platform.team_ids() == []
    assert len(tenant_service.live()) == 1


# ---------------------------------------------------------------------------
# Resuming a pending organization
# ---------------------------------------------------------------------------


def test_resubmitting_after_failure_resumes_same_organization(
    platform: RecordingSchedulingClient,
    tenant_service: RecordingTenantProvisioner,
    org_repo: FlakyOrgRepo,
) -> None:
    saga = _saga(platform, tenant_service, org_repo)
    platform.fail_next("create_team", ExternalTransportError("timed out"))
    with pytest.raises(TeamProvisioningFailed):
        asyncio.run(saga.provision_organization(LINCOLN))
    pending = _stored(org_repo)

    org = asyncio.run(saga.provision_organization(LINCOLN))

    assert org.id == pending.id
    assert org.status == "active"
    assert org.external_team_id is not None
    assert len(tenant_service.live()) == 1


def test_resume_adopts_tenant_left_by_failed_compensation(
    platform: RecordingSchedulingClient,
    tenant_service: RecordingTenantProvisioner,
    org_repo: FlakyOrgRepo,
) -> None:
    saga = _saga(platform, tenant_service, org_repo)
    platform.fail_next("create_membership", ExternalTransportError("timed out"))
    tenant_service.fail_next("delete_tenant", TenantProvisioningError("503"))
    with pytest.raises(CompensationFailed):
        asyncio.run(saga.provision_organization(LINCOLN))
    orphan = _stored(org_repo).tenant_id

    org = asyncio.run(saga.provision_organization(LINCOLN))

    assert org.tenant_id == orphan
    assert len(tenant_service.called("create_tenant")) == 1


def test_failed_unlink_leaves_row_unschedulable_and_resumable(
    platform: RecordingSchedulingClient,
    tenant_service: RecordingTenantProvisioner,
    org_repo: FlakyOrgRepo,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    link = org_repo.set_external_team

    async def clearing_fails(org_id, external_team_id):
        if external_team_id is None:
            raise RuntimeError("db down")
        return await link(org_id, external_team_id)

    monkeypatch.setattr(org_repo, "set_external_team", clearing_fails)
    saga = _saga(platform, tenant_service, org_repo)
    platform.fail_next("create_membership", ExternalTransportError("timed out"))

    with pytest.raises(CompensationFailed) as exc_info:
        asyncio.run(saga.provision_organization(LINCOLN))

    assert [name for name, _ in exc_info.value.failures] == ["link_team"]
    stale = _stored(org_repo)
    assert stale.external_team_id is not None
    assert stale.external_team_id not in platform.team_ids()
    assert stale.status == "pending"
    assert not stale.is_schedulable

    org = asyncio.run(saga.provision_organization(LINCOLN))

    assert org.id == stale.id
    assert org.status == "active"
    assert org.is_schedulable
    assert org.external_team_id in platform.team_ids()
    assert platform.membership(org.external_team_id, platform.admin_id).role is MembershipRole.OWNER


def test_resume_adopts_team_created_before_timeout(
    platform: RecordingSchedulingClient,
    tenant_service: RecordingTenantProvisioner,
    org_repo: FlakyOrgRepo,
) -> None:
    saga = _saga(platform, tenant_service, org_repo)
    platform.fail_after_next("create_team", ExternalTransportError("read timeout"))
    with pytest.raises(TeamProvisioningFailed):
        asyncio.run(saga.provision_organization(LINCOLN))
    [orphan_team] = platform.team_ids()

    org = asyncio.run(saga.provision_organization(LINCOLN))

    assert org.status == "active"
    assert org.external_team_id == orphan_team
    assert platform.team_ids() == [orphan_team]
    assert platform.called("find_team_by_slug") == [("lincoln-high",)]
    assert platform.membership(orphan_team, platform.admin_id).role is MembershipRole.OWNER


def test_taken_slug_on_fresh_organization_is_not_adopted(
    platform: RecordingSchedulingClient,
    tenant_service: RecordingTenantProvisioner,
    org_repo: FlakyOrgRepo,
) -> None:
    foreign = asyncio.run(platform.create_team("Someone Else", "lincoln-high"))
    platform.calls.clear()

    with pytest.raises(TeamProvisioningFailed):
        asyncio.run(_saga(platform, tenant_service, org_repo).provision_organization(LINCOLN))

    assert platform.called("find_team_by_slug") == []
    assert platform.team_ids() == [foreign.id]
    assert len(tenant_service.deleted) == 1
