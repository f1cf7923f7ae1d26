"""Provision a local organization together with its external team.

THE STEPS
----------
  1. validate_slug   registry lookup only; no external calls
  2. acquire_tenant  create tenant + insert pending Organization row
  3. create_team     external team from name and slug
  4. link_team       store external_team_id on the row
  5. grant_owner     default administrator → OWNER on the team

Each step's compensation (see saga.py) undoes only that step:

  acquire_tenant  delete the tenant, clear tenant_id on the row
  create_team     delete the external team
  link_team       clear external_team_id again

So a failure at 3, 4 or 5 deletes the tenant exactly once.  Only step 5
marks the row "active", and only an active row counts as provisioned:
a row that still carries a team id (because unlink_team itself failed)
is never offered for scheduling and can be resumed.

PENDING ROWS AND RESUMING
---------------------------
The organization row survives a failed attempt in status "pending" with
no team and no tenant.  Submitting the same slug again is therefore a
RESUME, not a duplicate: step 1 finds the pending row and the run reuses
its organization id.  Only a slug whose row is active is rejected with
DuplicateSlug.

A pending row that still holds a tenant_id (the process died mid-run, or
a compensation failed) is adopted by the resumed run rather than
provisioning a second tenant next to it.

Likewise for the team: if an earlier attempt created it but never saw
the answer (a timeout after the platform committed), the resumed
create_team hits the platform's slug conflict.  The run then looks the
team up by slug and adopts it.  A conflict on a FRESH slug is not
adopted: that team was not created by this service.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from calsync.clients.scheduling import (
    ExternalConflictError,
    ExternalPlatformError,
    SchedulingClient,
)
from calsync.clients.tenants import TenantProvisioner, TenantProvisioningError
from calsync.core.errors import (
    CompensationFailed,
    DuplicateSlug,
    TeamProvisioningFailed,
    TenantProvisioningFailed,
)
from calsync.core.metrics import SAGA_RUNS
from calsync.models.external import ExternalTeam, MembershipRole
from calsync.models.organization import Organization, OrganizationDraft
from calsync.repos.org_repo import OrgRepo, SlugTakenError
from calsync.services.identity_resolver import DefaultAdministrator, IdentityResolver
from calsync.services.membership_reconciler import MembershipReconciler
from calsync.services.saga import Saga, SagaStep

logger = logging.getLogger(__name__)


class ProvisioningSaga:
    def __init__(
        self,
        *,
        org_repo: OrgRepo,
        tenants: TenantProvisioner,
        client: SchedulingClient,
        resolver: IdentityResolver,
        reconciler: MembershipReconciler,
        default_admin: DefaultAdministrator,
        tenant_domain_suffix: str = "tenants.local",
    ) -> None:
        self.org_repo = org_repo
        self.tenants = tenants
        self.client = client
        self.resolver = resolver
        self.reconciler = reconciler
        self.default_admin = default_admin
        self.tenant_domain_suffix = tenant_domain_suffix

    async def provision_organization(self, draft: OrganizationDraft) -> Organization:
        run = _ProvisioningRun(self, draft)
        saga = Saga("provision_organization", run.steps())

        try:
            await saga.run()
        except DuplicateSlug:
            SAGA_RUNS.labels(outcome="rejected").inc()
            raise
        except CompensationFailed:
            SAGA_RUNS.labels(outcome="compensation_failed").inc()
            logger.error(
                "Provisioning of slug=%s left orphaned resources tenant_id=%s team_id=%s",
                draft.slug,
                run.tenant_id,
                run.team_id,
                extra={"slug": draft.slug, "org_id": run.org_id},
            )
            raise
        except Exception:
            SAGA_RUNS.labels(outcome="compensated").inc()
            raise

        SAGA_RUNS.labels(outcome="succeeded").inc()
        org = run.require_org()
        logger.info(
            "Provisioned organization id=%s slug=%s team=%s",
            org.id,
            org.slug,
            org.external_team_id,
            extra={"org_id": str(org.id), "slug": org.slug},
        )
        return org


class _ProvisioningRun:
    """State shared by the steps of one provisioning attempt."""

    def __init__(self, saga: ProvisioningSaga, draft: OrganizationDraft) -> None:
        self.saga = saga
        self.draft = draft
        self.org: Organization | None = None
        self.resuming = False
        self.tenant_id: str | None = None
        self.team_id: int | None = None

    @property
    def org_id(self) -> str | None:
        return str(self.org.id) if self.org is not None else None

    def steps(self) -> list[SagaStep]:
        return [
            SagaStep("validate_slug", self.validate_slug),
            SagaStep("acquire_tenant", self.acquire_tenant, self.release_tenant),
            SagaStep("create_team", self.create_team, self.delete_team),
            SagaStep("link_team", self.link_team, self.unlink_team),
            SagaStep("grant_owner", self.grant_owner),
        ]

    def require_org(self) -> Organization:
        if self.org is None:
            raise RuntimeError("step ran before the organization existed")
        return self.org

    def require_tenant(self) -> str:
        if self.tenant_id is None:
            raise RuntimeError("step ran before the tenant existed")
        return self.tenant_id

    def require_team(self) -> int:
        if self.team_id is None:
            raise RuntimeError("step ran before the team existed")
        return self.team_id

    # --- 1 ---

    async def validate_slug(self) -> None:
        existing = await self.saga.org_repo.get_by_slug(self.draft.slug)
        if existing is None:
            return
        if existing.is_schedulable:
            raise DuplicateSlug(self.draft.slug)

        self.org = existing
        self.resuming = True
        logger.info(
            "Resuming provisioning of pending organization id=%s slug=%s",
            existing.id,
            existing.slug,
            extra={"org_id": str(existing.id), "slug": existing.slug},
        )

    # --- 2 ---

    async def acquire_tenant(self) -> None:
        repo = self.saga.org_repo

        if self.resuming and self.require_org().tenant_id is not None:
            self.tenant_id = self.require_org().tenant_id
            logger.info("Adopting tenant_id=%s left by an earlier attempt", self.tenant_id)
            return

        domain = f"{self.draft.slug}.{self.saga.tenant_domain_suffix}"
        try:
            tenant = await self.saga.tenants.create_tenant(domain)
        except TenantProvisioningError as exc:
            raise TenantProvisioningFailed(f"tenant for {domain}: {exc}") from exc
        self.tenant_id = tenant.tenant_id

        try:
            if self.resuming:
                self.org = await repo.set_tenant(
                    self.require_org().id, tenant.tenant_id
                )
            else:
                org = replace(
                    Organization.new(name=self.draft.name, slug=self.draft.slug),
                    tenant_id=tenant.tenant_id,
                )
                await repo.add(org)
                self.org = org
        except Exception as exc:
            # Nothing local was committed; release the tenant so the step
            # leaves no trace before reporting failure.
            await self._delete_tenant_within_step(tenant.tenant_id, exc)
            if isinstance(exc, SlugTakenError):
                raise DuplicateSlug(self.draft.slug) from exc
            raise

    async def _delete_tenant_within_step(self, tenant_id: str, original: Exception) -> None:
        try:
            await self.saga.tenants.delete_tenant(tenant_id)
        except Exception as exc:
            raise CompensationFailed(original, [("acquire_tenant", exc)]) from original
        self.tenant_id = None

    async def release_tenant(self) -> None:
        await self.saga.tenants.delete_tenant(self.require_tenant())
        self.org = await self.saga.org_repo.set_tenant(self.require_org().id, None)
        self.tenant_id = None

    # --- 3 ---

    async def create_team(self) -> None:
        org = self.require_org()
        try:
            team = await self.saga.client.create_team(org.name, org.slug)
        except ExternalConflictError as exc:
            if not self.resuming:
                raise TeamProvisioningFailed(
                    f"external team slug {org.slug} is taken on the platform"
                ) from exc
            team = await self._adopt_team(org)
        except ExternalPlatformError as exc:
            raise TeamProvisioningFailed(
                f"external team for slug {org.slug}: {exc}"
            ) from exc
        self.team_id = team.id

    async def _adopt_team(self, org: Organization) -> ExternalTeam:
        try:
            team = await self.saga.client.find_team_by_slug(org.slug)
        except ExternalPlatformError as exc:
            raise TeamProvisioningFailed(
                f"looking up existing team for slug {org.slug}: {exc}"
            ) from exc
        if team is None:
            raise TeamProvisioningFailed(
                f"platform reports slug {org.slug} taken but has no such team"
            )
        logger.info(
            "Adopting team=%d left by an earlier attempt for slug=%s",
            team.id,
            org.slug,
            extra={"org_id": str(org.id), "slug": org.slug},
        )
        return team

    async def delete_team(self) -> None:
        await self.saga.client.delete_team(self.require_team())
        self.team_id = None

    # --- 4 ---

    async def link_team(self) -> None:
        self.org = await self.saga.org_repo.set_external_team(
            self.require_org().id, self.require_team()
        )

    async def unlink_team(self) -> None:
        self.org = await self.saga.org_repo.set_external_team(self.require_org().id, None)

    # --- 5 ---

    async def grant_owner(self) -> None:
        team_id = self.require_team()
        admin_id = await self.saga.default_admin.resolve(self.saga.resolver)
        await self.saga.reconciler.ensure_membership(
            admin_id, team_id, MembershipRole.OWNER
        )
        self.org = await self.saga.org_repo.mark_active(self.require_org().id)
