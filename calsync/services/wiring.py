"""Assemble the orchestrator from configured collaborators.

Repositories follow the same rule as the rest of the service: PostgreSQL
when DATABASE_URL is set, in-memory otherwise.  The external clients and
the default administrator are process-wide singletons; repositories are
scoped to one request (or one worker task) through ``services_scope``.

The default administrator is an explicit value built from configuration
here and injected into the saga, so tests can swap in a pre-resolved
``DefaultAdministrator.fixed(...)``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta

from calsync.clients import scheduling, tenants
from calsync.core.config import SETTINGS
from calsync.db.engine import async_session_factory
from calsync.repos.booking_repo import BookingRepo, InMemoryBookingRepo
from calsync.repos.org_repo import InMemoryOrgRepo, OrgRepo
from calsync.repos.pg_booking_repo import PgBookingRepo
from calsync.repos.pg_org_repo import PgOrgRepo
from calsync.repos.pg_staff_repo import PgStaffRepo
from calsync.repos.staff_repo import InMemoryStaffRepo, StaffRepo
from calsync.services.booking_proxy import BookingProxy
from calsync.services.identity_resolver import DefaultAdministrator, IdentityResolver
from calsync.services.membership_reconciler import MembershipReconciler
from calsync.services.provisioning import ProvisioningSaga
from calsync.services.staff_sync import StaffSync

# --- Module-level singletons (in-memory fallbacks) ---
org_repo = InMemoryOrgRepo()
staff_repo = InMemoryStaffRepo()
booking_repo = InMemoryBookingRepo()

default_admin = DefaultAdministrator(SETTINGS.default_admin_email)


@dataclass(frozen=True, slots=True)
class SyncServices:
    org_repo: OrgRepo
    staff_repo: StaffRepo
    provisioning: ProvisioningSaga
    staff_sync: StaffSync
    bookings: BookingProxy


def build_services(
    org_repo: OrgRepo, staff_repo: StaffRepo, booking_repo: BookingRepo
) -> SyncServices:
    # Read the client singletons at call time so tests can replace them
    client = scheduling.scheduling_client
    resolver = IdentityResolver(client)
    reconciler = MembershipReconciler(client)

    return SyncServices(
        org_repo=org_repo,
        staff_repo=staff_repo,
        provisioning=ProvisioningSaga(
            org_repo=org_repo,
            tenants=tenants.tenant_provisioner,
            client=client,
            resolver=resolver,
            reconciler=reconciler,
            default_admin=default_admin,
            tenant_domain_suffix=SETTINGS.tenant_domain_suffix,
        ),
        staff_sync=StaffSync(
            org_repo=org_repo,
            staff_repo=staff_repo,
            resolver=resolver,
            reconciler=reconciler,
        ),
        bookings=BookingProxy(
            staff_repo=staff_repo,
            org_repo=org_repo,
            booking_repo=booking_repo,
            client=client,
            pending_stale_after=timedelta(seconds=SETTINGS.booking_pending_stale_seconds),
        ),
    )


@asynccontextmanager
async def services_scope() -> AsyncIterator[SyncServices]:
    if async_session_factory is None:
        yield build_services(org_repo, staff_repo, booking_repo)
        return

    async with async_session_factory() as session:
        yield build_services(
            PgOrgRepo(session), PgStaffRepo(session), PgBookingRepo(session)
        )
