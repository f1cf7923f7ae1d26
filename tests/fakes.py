"""Test doubles shared across the suite.

RecordingSchedulingClient and RecordingTenantProvisioner extend the
in-memory collaborators with a call log and scripted failures:

    platform.fail_next("create_team", ExternalTransportError("timed out"))

The next create_team call raises; later calls behave normally.

    platform.fail_after_next("create_team", ExternalTransportError("timed out"))

performs the call and THEN raises: the platform kept the effect but the
caller never saw the answer.
FlakyOrgRepo does the same for local registry writes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from calsync.clients.scheduling import ExternalConflictError, InMemorySchedulingClient
from calsync.clients.tenants import InMemoryTenantProvisioner, Tenant
from calsync.models.booking import Slot
from calsync.models.external import (
    ExternalBookingResult,
    ExternalMembership,
    ExternalTeam,
    ExternalUser,
    MembershipRole,
)
from calsync.models.organization import Organization
from calsync.repos.org_repo import InMemoryOrgRepo

ADMIN_EMAIL = "owner@calsync.test"


class _ScriptedFailures:
    def _init_script(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self._failures: dict[str, list[BaseException]] = {}
        self._failures_after: dict[str, list[BaseException]] = {}

    def fail_next(self, operation: str, exc: BaseException, times: int = 1) -> None:
        self._failures.setdefault(operation, []).extend([exc] * times)

    def fail_after_next(self, operation: str, exc: BaseException) -> None:
        self._failures_after.setdefault(operation, []).append(exc)

    def called(self, operation: str) -> list[tuple[Any, ...]]:
        return [args for op, args in self.calls if op == operation]

    def _enter(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, args))
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def _leave(self, operation: str) -> None:
        pending = self._failures_after.get(operation)
        if pending:
            raise pending.pop(0)


class RecordingSchedulingClient(_ScriptedFailures, InMemorySchedulingClient):
    def __init__(self) -> None:
        super().__init__()
        self._init_script()
        self.admin_id: int | None = None
        # When set, the next team created gets this id
        self.next_team_id: int | None = None

    async def create_team(self, name: str, slug: str) -> ExternalTeam:
        self._enter("create_team", name, slug)
        if self.next_team_id is None:
            team = await super().create_team(name, slug)
        else:
            if any(t.slug == slug for t in self._teams.values()):
                raise ExternalConflictError(f"team slug {slug!r} exists", status_code=409)
            team = ExternalTeam(id=self.next_team_id, name=name, slug=slug)
            self.next_team_id = None
            self._teams[team.id] = team
        self._leave("create_team")
        return team

    async def delete_team(self, team_id: int) -> None:
        self._enter("delete_team", team_id)
        await super().delete_team(team_id)

    async def find_team_by_slug(self, slug: str) -> ExternalTeam | None:
        self._enter("find_team_by_slug", slug)
        return await super().find_team_by_slug(slug)

    async def create_membership(
        self, team_id: int, user_id: int, role: MembershipRole, accepted: bool = True
    ) -> ExternalMembership:
        self._enter("create_membership", team_id, user_id, role)
        return await super().create_membership(team_id, user_id, role, accepted)

    async def find_membership(
        self, team_id: int, user_id: int
    ) -> ExternalMembership | None:
        self._enter("find_membership", team_id, user_id)
        return await super().find_membership(team_id, user_id)

    async def update_membership_role(
        self, team_id: int, membership_id: int, role: MembershipRole
    ) -> ExternalMembership:
        self._enter("update_membership_role", team_id, membership_id, role)
        return await super().update_membership_role(team_id, membership_id, role)

    async def find_user_by_email(self, email: str) -> ExternalUser | None:
        self._enter("find_user_by_email", email)
        return await super().find_user_by_email(email)

    async def create_managed_user(
        self, email: str, username: str, name: str
    ) -> ExternalUser:
        self._enter("create_managed_user", email, username, name)
        return await super().create_managed_user(email, username, name)

    async def get_availability(
        self, event_type_id: int, date_from: datetime, date_to: datetime
    ) -> list[Slot]:
        self._enter("get_availability", event_type_id, date_from, date_to)
        return await super().get_availability(event_type_id, date_from, date_to)

    async def create_booking(self, payload: dict[str, Any]) -> ExternalBookingResult:
        self._enter("create_booking", payload)
        return await super().create_booking(payload)

    def team_ids(self) -> list[int]:
        return list(self._teams)

    def membership(self, team_id: int, user_id: int) -> ExternalMembership | None:
        return self._memberships.get((team_id, user_id))


class RecordingTenantProvisioner(_ScriptedFailures, InMemoryTenantProvisioner):
    def __init__(self) -> None:
        super().__init__()
        self._init_script()

    async def create_tenant(self, domain: str) -> Tenant:
        self._enter("create_tenant", domain)
        return await super().create_tenant(domain)

    async def delete_tenant(self, tenant_id: str) -> None:
        self._enter("delete_tenant", tenant_id)
        await super().delete_tenant(tenant_id)


class FlakyOrgRepo(_ScriptedFailures, InMemoryOrgRepo):
    """In-memory registry whose writes can be scripted to fail."""

    def __init__(self) -> None:
        super().__init__()
        self._init_script()

    async def add(self, org: Organization) -> None:
        self._enter("add", org.slug)
        await super().add(org)

    async def set_tenant(self, org_id: UUID, tenant_id: str | None) -> Organization:
        self._enter("set_tenant", org_id, tenant_id)
        return await super().set_tenant(org_id, tenant_id)

    async def set_external_team(
        self, org_id: UUID, external_team_id: int | None
    ) -> Organization:
        self._enter("set_external_team", org_id, external_team_id)
        return await super().set_external_team(org_id, external_team_id)

    async def mark_active(self, org_id: UUID) -> Organization:
        self._enter("mark_active", org_id)
        return await super().mark_active(org_id)
