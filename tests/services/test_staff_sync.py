from __future__ import annotations

import asyncio
from dataclasses import replace
from uuid import uuid4

import pytest

from calsync.clients.scheduling import ExternalTransportError
from calsync.core.errors import (
    MembershipFailed,
    OrganizationNotFound,
    OrganizationNotSchedulable,
)
from calsync.models.external import MembershipRole
from calsync.models.organization import Organization, OrganizationDraft, StaffDraft
from calsync.services import wiring
from tests.fakes import RecordingSchedulingClient


@pytest.fixture
def services():
    return wiring.build_services(wiring.org_repo, wiring.staff_repo, wiring.booking_repo)


@pytest.fixture
def org(services) -> Organization:
    return asyncio.run(
        services.provisioning.provision_organization(
            OrganizationDraft(name="Lincoln High", slug="lincoln-high")
        )
    )


def test_new_staff_is_created_linked_and_member(
    services, org: Organization, platform: RecordingSchedulingClient
) -> None:
    staff = asyncio.run(
        services.staff_sync.add_staff_to_organization(
            org.id, StaffDraft(email="Jane@School.edu", display_name="Jane", event_type_id=9)
        )
    )

    assert staff.email == "jane@school.edu"
    assert staff.external_user_id is not None
    assert staff.external_event_type_id == 9
    membership = platform.membership(org.external_team_id, staff.external_user_id)
    assert membership.role is MembershipRole.MEMBER


def test_admin_staff_gets_admin_membership(
    services, org: Organization, platform: RecordingSchedulingClient
) -> None:
    staff = asyncio.run(
        services.staff_sync.add_staff_to_organization(
            org.id, StaffDraft(email="head@school.edu", role="admin")
        )
    )

    membership = platform.membership(org.external_team_id, staff.external_user_id)
    assert membership.role is MembershipRole.ADMIN


def test_onboarding_twice_is_idempotent(
    services, org: Organization, platform: RecordingSchedulingClient
) -> None:
    draft = StaffDraft(email="jane@school.edu")
    first = asyncio.run(services.staff_sync.add_staff_to_organization(org.id, draft))
    second = asyncio.run(services.staff_sync.add_staff_to_organization(org.id, draft))

    assert first.id == second.id
    assert first.external_user_id == second.external_user_id
    assert len(platform.called("create_managed_user")) == 1
    # Membership created once (the admin's owner grant is the other one)
    jane_creates = [
        args for args in platform.called("create_membership") if args[1] == first.external_user_id
    ]
    assert len(jane_creates) == 1
    assert len(asyncio.run(wiring.staff_repo.list_by_org(org.id))) == 1


def test_existing_platform_user_is_reused(
    services, org: Organization, platform: RecordingSchedulingClient
) -> None:
    existing = asyncio.run(
        platform.create_managed_user("jane@school.edu", "jane", "Jane")
    )

    staff = asyncio.run(
        services.staff_sync.add_staff_to_organization(
            org.id, StaffDraft(email="jane@school.edu")
        )
    )

    assert staff.external_user_id == existing.id


def test_membership_failure_leaves_staff_unlinked_and_retry_links(
    services, org: Organization, platform: RecordingSchedulingClient
) -> None:
    draft = StaffDraft(email="jane@school.edu")
    platform.fail_next("create_membership", ExternalTransportError("timed out"))

    with pytest.raises(MembershipFailed):
        asyncio.run(services.staff_sync.add_staff_to_organization(org.id, draft))

    unlinked = asyncio.run(wiring.staff_repo.get_by_email(org.id, "jane@school.edu"))
    assert unlinked is not None
    assert unlinked.external_user_id is None

    staff = asyncio.run(services.staff_sync.add_staff_to_organization(org.id, draft))
    assert staff.id == unlinked.id
    assert staff.external_user_id is not None


def test_unknown_organization(services) -> None:
    with pytest.raises(OrganizationNotFound):
        asyncio.run(
            services.staff_sync.add_staff_to_organization(
                uuid4(), StaffDraft(email="jane@school.edu")
            )
        )


def test_pending_organization_is_not_schedulable(
    services, platform: RecordingSchedulingClient
) -> None:
    pending = Organization.new(name="Lincoln High", slug="lincoln-high")
    asyncio.run(wiring.org_repo.add(pending))

    with pytest.raises(OrganizationNotSchedulable):
        asyncio.run(
            services.staff_sync.add_staff_to_organization(
                pending.id, StaffDraft(email="jane@school.edu")
            )
        )
    assert platform.calls == []



def test_pending_organization_with_team_is_not_schedulable(
    services, platform: RecordingSchedulingClient
) -> None:
    # Step 4 linked the team but the owner grant never completed
    half_done = replace(
        Organization.new(name="Lincoln High", slug="lincoln-high"), external_team_id=7
    )
    asyncio.run(wiring.org_repo.add(half_done))

    with pytest.raises(OrganizationNotSchedulable):
        asyncio.run(
            services.staff_sync.add_staff_to_organization(
                half_done.id, StaffDraft(email="jane@school.edu")
            )
        )
    assert platform.calls == []


def test_same_email_in_two_organizations_shares_one_external_user(
    services, org: Organization, platform: RecordingSchedulingClient
) -> None:
    other = asyncio.run(
        services.provisioning.provision_organization(
            OrganizationDraft(name="Roosevelt Middle", slug="roosevelt-middle")
        )
    )
    draft = StaffDraft(email="jane@school.edu")

    at_lincoln = asyncio.run(services.staff_sync.add_staff_to_organization(org.id, draft))
    at_roosevelt = asyncio.run(services.staff_sync.add_staff_to_organization(other.id, draft))

    assert at_lincoln.id != at_roosevelt.id
    assert at_lincoln.external_user_id == at_roosevelt.external_user_id
    assert len(platform.called("create_managed_user")) == 1
    assert platform.membership(org.external_team_id, at_lincoln.external_user_id) is not None
    assert platform.membership(other.external_team_id, at_roosevelt.external_user_id) is not None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"email": ""},
        {"email": "not-an-email"},
        {"email": "jane@school.edu", "role": "owner"},
    ],
)
def test_staff_draft_validation(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        StaffDraft(**kwargs)
