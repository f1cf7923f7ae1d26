"""Resolve a staff email to exactly one external user.

CREATE-OR-REUSE UNDER CONCURRENCY
-----------------------------------
The naive version races:

  caller A: lookup(jane) → none          caller B: lookup(jane) → none
  caller A: create(jane) → id 7          caller B: create(jane) → ???

We never hold a lock across the network, so the platform's own
uniqueness rule on email decides.  The loser gets a conflict, loops back
to the lookup and reuses the winner's id:

  loop:
    lookup(email)        → found?  return it
    create(email, name)  → ok?     return it
                         → conflict: go round again

A lookup that FAILS (timeout, 5xx) is not "not found".  We stop with
LookupFailed instead of creating, because creating on an ambiguous
lookup is exactly how duplicate accounts happen.

A conflict the lookup cannot explain (the email is still absent) means
the USERNAME collided with someone else's; the next attempt derives a
suffixed username.

Nothing here writes local state.  Linking the id onto the staff row is
done by the caller once the id has been used successfully.
"""

from __future__ import annotations

import asyncio
import logging
import re

from calsync.clients.scheduling import (
    ExternalConflictError,
    ExternalPlatformError,
    SchedulingClient,
)
from calsync.core.errors import ConfigurationError, LookupFailed, UserProvisioningFailed
from calsync.core.metrics import IDENTITY_RESOLUTIONS
from calsync.models.organization import normalize_email

logger = logging.getLogger(__name__)

_USERNAME_JUNK = re.compile(r"[^a-z0-9]+")


def username_candidate(email: str, attempt: int = 0) -> str:
    """Derive a username from the email's local part.

    ``Jane.Doe+x@school.edu`` → ``jane-doe-x``; later attempts append -2, -3...
    """
    local = email.split("@", 1)[0].lower()
    base = _USERNAME_JUNK.sub("-", local).strip("-") or "user"
    return base if attempt == 0 else f"{base}-{attempt + 1}"


class IdentityResolver:
    def __init__(self, client: SchedulingClient, *, max_attempts: int = 3) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._client = client
        self._max_attempts = max_attempts

    async def lookup_user(self, email: str) -> int | None:
        """Lookup-only path.  Not found is a normal ``None`` result."""
        email = normalize_email(email)
        try:
            user = await self._client.find_user_by_email(email)
        except ExternalPlatformError as exc:
            raise LookupFailed(f"lookup of {email} failed: {exc}") from exc
        return user.id if user is not None else None

    async def resolve_or_create_user(
        self, email: str, display_name: str | None = None
    ) -> int:
        email = normalize_email(email)
        conflicted = False

        for attempt in range(self._max_attempts):
            existing = await self.lookup_user(email)
            if existing is not None:
                IDENTITY_RESOLUTIONS.labels(
                    result="conflict_reused" if conflicted else "found"
                ).inc()
                return existing

            username = username_candidate(email, attempt)
            try:
                user = await self._client.create_managed_user(
                    email, username, display_name or username
                )
            except ExternalConflictError:
                conflicted = True
                logger.info(
                    "Managed user creation conflicted email=%s username=%s attempt=%d; "
                    "re-checking",
                    email,
                    username,
                    attempt + 1,
                )
                continue
            except ExternalPlatformError as exc:
                raise UserProvisioningFailed(
                    f"creating managed user for {email} failed: {exc}"
                ) from exc

            IDENTITY_RESOLUTIONS.labels(result="created").inc()
            logger.info("Created managed user id=%d email=%s", user.id, email)
            return user.id

        raise UserProvisioningFailed(
            f"could not create or find an external user for {email} "
            f"after {self._max_attempts} attempts"
        )


class DefaultAdministrator:
    """The one externally-provisioned account that owns every team.

    Configured by email, looked up once, then cached for the life of the
    process.  Its identity never changes after creation, so there is
    nothing to invalidate short of a restart.  It is never created here.
    """

    def __init__(self, email: str | None, *, user_id: int | None = None) -> None:
        self.email = email
        self._user_id = user_id
        self._lock = asyncio.Lock()

    @classmethod
    def fixed(cls, user_id: int, email: str = "admin@fixed.invalid") -> DefaultAdministrator:
        return cls(email, user_id=user_id)

    @property
    def cached_id(self) -> int | None:
        return self._user_id

    async def resolve(self, resolver: IdentityResolver) -> int:
        if self._user_id is not None:
            return self._user_id
        if not self.email:
            raise ConfigurationError("DEFAULT_ADMIN_EMAIL is not configured")

        async with self._lock:
            if self._user_id is None:
                user_id = await resolver.lookup_user(self.email)
                if user_id is None:
                    raise ConfigurationError(
                        f"default administrator {self.email} does not exist "
                        "on the scheduling platform"
                    )
                logger.info("Resolved default administrator id=%d", user_id)
                self._user_id = user_id
        return self._user_id
