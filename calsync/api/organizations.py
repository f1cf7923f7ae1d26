"""Organization provisioning and staff onboarding endpoints.

Both write endpoints are administrative and demand the ``admin`` role.
They are safe to repeat: provisioning a slug whose earlier attempt was
rolled back resumes it, and onboarding the same staff email twice
converges on one external user and one team membership.
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from calsync.api.dependencies import get_services, require_role
from calsync.api.errors import http_error, validation_error
from calsync.core.errors import SyncError
from calsync.models.organization import Organization, OrganizationDraft, Staff, StaffDraft
from calsync.models.principal import Principal
from calsync.services.wiring import SyncServices

router = APIRouter(prefix="/v1/organizations", tags=["organizations"])

_require_admin = require_role("admin")


# --- Pydantic schemas ---


class OrganizationCreateIn(BaseModel):
    name: str
    slug: str


class OrganizationOut(BaseModel):
    id: str
    name: str
    slug: str
    status: str
    external_team_id: int | None


class StaffCreateIn(BaseModel):
    email: str
    display_name: str = ""
    role: str = "member"
    event_type_id: int | None = None


class StaffOut(BaseModel):
    id: str
    org_id: str
    email: str
    display_name: str
    role: str
    external_user_id: int | None
    external_event_type_id: int | None


def _org_out(org: Organization) -> OrganizationOut:
    return OrganizationOut(
        id=str(org.id),
        name=org.name,
        slug=org.slug,
        status=org.status,
        external_team_id=org.external_team_id,
    )


def _staff_out(staff: Staff) -> StaffOut:
    return StaffOut(
        id=str(staff.id),
        org_id=str(staff.org_id),
        email=staff.email,
        display_name=staff.display_name,
        role=staff.role,
        external_user_id=staff.external_user_id,
        external_event_type_id=staff.external_event_type_id,
    )


# --- Endpoints ---


@router.post("", response_model=OrganizationOut, status_code=status.HTTP_201_CREATED)
async def create_organization(
    body: OrganizationCreateIn,
    _principal: Annotated[Principal, Depends(_require_admin)],
    services: Annotated[SyncServices, Depends(get_services)],
) -> OrganizationOut:
    """Provision an organization and its external team, owned by the default administrator."""
    try:
        draft = OrganizationDraft(name=body.name, slug=body.slug)
    except ValueError as exc:
        raise validation_error(exc) from exc

    try:
        org = await services.provisioning.provision_organization(draft)
    except SyncError as exc:
        raise http_error(exc) from exc
    return _org_out(org)


@router.get("/{org_id}", response_model=OrganizationOut)
async def get_organization(
    org_id: UUID,
    _principal: Annotated[Principal, Depends(_require_admin)],
    services: Annotated[SyncServices, Depends(get_services)],
) -> OrganizationOut:
    org = await services.org_repo.get_by_id(org_id)
    if org is None:
        raise HTTPException(status_code=404, detail="organization not found")
    return _org_out(org)


@router.post(
    "/{org_id}/staff",
    response_model=StaffOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_staff(
    org_id: UUID,
    body: StaffCreateIn,
    _principal: Annotated[Principal, Depends(_require_admin)],
    services: Annotated[SyncServices, Depends(get_services)],
) -> StaffOut:
    """Onboard a staff member locally and as a member of the organization's team."""
    try:
        draft = StaffDraft(
            email=body.email,
            display_name=body.display_name,
            role=body.role,
            event_type_id=body.event_type_id,
        )
    except ValueError as exc:
        raise validation_error(exc) from exc

    try:
        staff = await services.staff_sync.add_staff_to_organization(org_id, draft)
    except SyncError as exc:
        raise http_error(exc) from exc
    return _staff_out(staff)


@router.get("/{org_id}/staff", response_model=list[StaffOut])
async def list_staff(
    org_id: UUID,
    _principal: Annotated[Principal, Depends(_require_admin)],
    services: Annotated[SyncServices, Depends(get_services)],
) -> list[StaffOut]:
    """Staff of one organization, including those not yet linked externally."""
    if await services.org_repo.get_by_id(org_id) is None:
        raise HTTPException(status_code=404, detail="organization not found")
    staff = await services.staff_repo.list_by_org(org_id)
    return [_staff_out(s) for s in sorted(staff, key=lambda s: s.email)]
