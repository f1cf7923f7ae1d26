"""Add a staff member to an organization and to its external team.

Order matters for the "link only after use" rule:

  1. find or insert the local Staff row (no external id yet)
  2. resolve the external user (reuse the linked id if there is one)
  3. reconcile team membership at the staff role
  4. only now write external_user_id onto the row

If 2 or 3 fails the row stays unlinked and the call can simply be
repeated; every step is idempotent.
"""

from __future__ import annotations

import logging
from uuid import UUID

from calsync.core.errors import OrganizationNotFound, OrganizationNotSchedulable
from calsync.models.external import MembershipRole
from calsync.models.organization import Staff, StaffDraft
from calsync.repos.org_repo import OrgRepo
from calsync.repos.staff_repo import StaffExistsError, StaffRepo
from calsync.services.identity_resolver import IdentityResolver
from calsync.services.membership_reconciler import MembershipReconciler

logger = logging.getLogger(__name__)


class StaffSync:
    def __init__(
        self,
        *,
        org_repo: OrgRepo,
        staff_repo: StaffRepo,
        resolver: IdentityResolver,
        reconciler: MembershipReconciler,
    ) -> None:
        self._orgs = org_repo
        self._staff = staff_repo
        self._resolver = resolver
        self._reconciler = reconciler

    async def add_staff_to_organization(self, org_id: UUID, draft: StaffDraft) -> Staff:
        org = await self._orgs.get_by_id(org_id)
        if org is None:
            raise OrganizationNotFound(f"organization {org_id} not found")
        team_id = org.external_team_id
        if not org.is_schedulable or team_id is None:
            raise OrganizationNotSchedulable(
                f"organization {org.slug} has not finished provisioning"
            )

        staff = await self._find_or_insert(org_id, draft)

        external_user_id = staff.external_user_id
        if external_user_id is None:
            external_user_id = await self._resolver.resolve_or_create_user(
                staff.email, draft.display_name or None
            )

        await self._reconciler.ensure_membership(
            external_user_id,
            team_id,
            MembershipRole.from_staff_role(staff.role),
        )

        if (
            staff.external_user_id != external_user_id
            or (
                draft.event_type_id is not None
                and staff.external_event_type_id != draft.event_type_id
            )
        ):
            staff = await self._staff.link_external(
                staff.id, external_user_id, draft.event_type_id
            )
            logger.info(
                "Linked staff id=%s to external user=%d",
                staff.id,
                external_user_id,
                extra={"staff_id": str(staff.id), "org_id": str(org_id)},
            )
        return staff

    async def _find_or_insert(self, org_id: UUID, draft: StaffDraft) -> Staff:
        existing = await self._staff.get_by_email(org_id, draft.email)
        if existing is not None:
            return existing

        staff = Staff.new(
            org_id=org_id,
            email=draft.email,
            display_name=draft.display_name,
            role=draft.role,
        )
        try:
            await self._staff.add(staff)
        except StaffExistsError:
            # Concurrent onboarding of the same email won the insert
            winner = await self._staff.get_by_email(org_id, draft.email)
            if winner is None:
                raise
            return winner
        return staff
