"""Error taxonomy for the synchronization core.

Every failure the orchestrator surfaces is a SyncError subclass with a
stable ``code``.  The API layer maps codes to HTTP statuses; the worker
logs them.  Nothing in the core retries; the category tells the CALLER
what it may do:

  FATAL (never retry automatically)
    DuplicateSlug         slug already belongs to a provisioned organization
    ConfigurationError    default administrator account is missing
    CompensationFailed    rollback itself failed; orphaned resources exist

  TRANSIENT (caller may retry with backoff)
    LookupFailed, MembershipFailed, BookingFailed, AvailabilityFailed,
    TeamProvisioningFailed, TenantProvisioningFailed, UserProvisioningFailed

  STATE (request does not make sense against current local state)
    OrganizationNotFound, StaffNotFound,
    OrganizationNotSchedulable, ExpertNotSchedulable

External causes are always chained (``raise ... from exc``) so the
original transport or HTTP error stays visible in logs.
"""

from __future__ import annotations


class SyncError(Exception):
    code = "sync_error"


# ---------------------------------------------------------------------------
# Fatal
# ---------------------------------------------------------------------------


class DuplicateSlug(SyncError):
    code = "duplicate_slug"

    def __init__(self, slug: str) -> None:
        super().__init__(f"organization slug {slug!r} is already provisioned")
        self.slug = slug


class ConfigurationError(SyncError):
    code = "configuration_error"


class CompensationFailed(SyncError):
    """Rollback of a failed saga did not complete.

    Carries the original step failure and every compensation that raised,
    so the operator can find the orphaned tenant / team by hand.
    """

    code = "compensation_failed"

    def __init__(
        self,
        original: BaseException,
        failures: list[tuple[str, BaseException]],
    ) -> None:
        steps = ", ".join(name for name, _ in failures)
        super().__init__(
            f"compensation failed for step(s) {steps} after: {original}"
        )
        self.original = original
        self.failures = failures


# ---------------------------------------------------------------------------
# Transient
# ---------------------------------------------------------------------------


class TransientSyncError(SyncError):
    code = "transient"


class LookupFailed(TransientSyncError):
    code = "lookup_failed"


class MembershipFailed(TransientSyncError):
    code = "membership_failed"


class BookingFailed(TransientSyncError):
    code = "booking_failed"


class AvailabilityFailed(TransientSyncError):
    code = "availability_failed"


class TeamProvisioningFailed(TransientSyncError):
    code = "team_provisioning_failed"


class TenantProvisioningFailed(TransientSyncError):
    code = "tenant_provisioning_failed"


class UserProvisioningFailed(TransientSyncError):
    code = "user_provisioning_failed"


# ---------------------------------------------------------------------------
# Local state
# ---------------------------------------------------------------------------


class OrganizationNotFound(SyncError):
    code = "organization_not_found"


class StaffNotFound(SyncError):
    code = "staff_not_found"


class OrganizationNotSchedulable(SyncError):
    code = "organization_not_schedulable"


class ExpertNotSchedulable(SyncError):
    code = "expert_not_schedulable"
