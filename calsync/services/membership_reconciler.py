"""Bring one (user, team, role) membership to its desired state.

The platform is the source of truth; nothing is cached locally.  Every
call reads current state and makes at most one change:

  absent          → create (accepted immediately, no invitation state)
  different role  → update role (both escalation and downgrade)
  same role       → nothing

Calling it again with the same arguments is always safe.  A create that
conflicts means someone else created the membership in between; we read
it back and converge instead of failing.  Any other platform failure is
raised as MembershipFailed; retrying is the caller's decision.
"""

from __future__ import annotations

import logging
from enum import Enum

from calsync.clients.scheduling import (
    ExternalConflictError,
    ExternalPlatformError,
    SchedulingClient,
)
from calsync.core.errors import MembershipFailed
from calsync.core.metrics import MEMBERSHIP_RECONCILIATIONS
from calsync.models.external import ExternalMembership, MembershipRole

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class MembershipReconciler:
    def __init__(self, client: SchedulingClient) -> None:
        self._client = client

    async def ensure_membership(
        self, user_id: int, team_id: int, role: MembershipRole
    ) -> ReconcileOutcome:
        try:
            outcome = await self._reconcile(user_id, team_id, role)
        except ExternalPlatformError as exc:
            raise MembershipFailed(
                f"membership user={user_id} team={team_id} role={role.value}: {exc}"
            ) from exc

        MEMBERSHIP_RECONCILIATIONS.labels(outcome=outcome.value).inc()
        logger.info(
            "Membership user=%d team=%d role=%s → %s",
            user_id,
            team_id,
            role.value,
            outcome.value,
        )
        return outcome

    async def _reconcile(
        self, user_id: int, team_id: int, role: MembershipRole
    ) -> ReconcileOutcome:
        existing = await self._client.find_membership(team_id, user_id)
        if existing is None:
            try:
                await self._client.create_membership(team_id, user_id, role, accepted=True)
                return ReconcileOutcome.CREATED
            except ExternalConflictError:
                existing = await self._client.find_membership(team_id, user_id)
                if existing is None:
                    raise
        return await self._converge(existing, role)

    async def _converge(
        self, existing: ExternalMembership, role: MembershipRole
    ) -> ReconcileOutcome:
        if existing.role == role:
            return ReconcileOutcome.UNCHANGED
        await self._client.update_membership_role(existing.team_id, existing.id, role)
        return ReconcileOutcome.UPDATED
