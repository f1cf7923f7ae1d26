"""Client for the external scheduling platform.

THE CONTRACT WITH THE REST OF THE SERVICE
-------------------------------------------
Callers never see httpx.  Every call either returns a domain shape from
calsync.models.external or raises one of three exceptions:

  ExternalTransportError  the request may or may not have reached the
                          platform (timeout, connection reset).  The
                          outcome is UNKNOWN, so callers must not assume
                          "nothing happened".
  ExternalConflictError   the platform refused because the thing already
                          exists (409).  For identities and memberships
                          this is the serialization point of the whole
                          system: the platform's uniqueness rule decides
                          who won a race.
  ExternalPlatformError   any other refusal; carries the status code.

"Not found" on a lookup is NOT an error: find_* return None.

TIMEOUTS
----------
The core imposes none of its own.  The httpx client is built with the
caller's timeout (SCHEDULING_TIMEOUT_SECONDS), and its expiry surfaces
as ExternalTransportError like any other transient failure.

WHY TWO IMPLEMENTATIONS
-------------------------
HttpSchedulingClient talks to the real API with a single static bearer
credential.  InMemorySchedulingClient is a small fake of the platform's
observable rules (unique emails, unique team slugs, one membership per
user and team) used when SCHEDULING_API_URL is not configured, the same
way the repositories fall back to memory without DATABASE_URL.
"""

from __future__ import annotations

import itertools
import logging
import time
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

import httpx

from calsync.core.config import SETTINGS
from calsync.core.metrics import EXTERNAL_CALL_DURATION, EXTERNAL_CALLS
from calsync.models.booking import Slot
from calsync.models.external import (
    ExternalBookingResult,
    ExternalMembership,
    ExternalTeam,
    ExternalUser,
    MembershipRole,
)

logger = logging.getLogger(__name__)


class ExternalPlatformError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ExternalTransportError(ExternalPlatformError):
    pass


class ExternalConflictError(ExternalPlatformError):
    pass


@runtime_checkable
class SchedulingClient(Protocol):
    async def create_team(self, name: str, slug: str) -> ExternalTeam: ...
    async def delete_team(self, team_id: int) -> None: ...
    async def find_team_by_slug(self, slug: str) -> ExternalTeam | None: ...
    async def create_membership(
        self, team_id: int, user_id: int, role: MembershipRole, accepted: bool = True
    ) -> ExternalMembership: ...
    async def find_membership(
        self, team_id: int, user_id: int
    ) -> ExternalMembership | None: ...
    async def update_membership_role(
        self, team_id: int, membership_id: int, role: MembershipRole
    ) -> ExternalMembership: ...
    async def find_user_by_email(self, email: str) -> ExternalUser | None: ...
    async def create_managed_user(
        self, email: str, username: str, name: str
    ) -> ExternalUser: ...
    async def get_availability(
        self, event_type_id: int, date_from: datetime, date_to: datetime
    ) -> list[Slot]: ...
    async def create_booking(self, payload: dict[str, Any]) -> ExternalBookingResult: ...


# ---------------------------------------------------------------------------
# HTTP implementation
# ---------------------------------------------------------------------------


class HttpSchedulingClient:
    """Talks to the platform's REST API.

    Responses use the envelope ``{"status": "success", "data": ...}``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # --- teams ---

    async def create_team(self, name: str, slug: str) -> ExternalTeam:
        data = await self._request(
            "create_team", "POST", "/v2/teams", json={"name": name, "slug": slug}
        )
        return ExternalTeam(id=int(data["id"]), name=data["name"], slug=data["slug"])

    async def delete_team(self, team_id: int) -> None:
        await self._request("delete_team", "DELETE", f"/v2/teams/{team_id}")

    async def find_team_by_slug(self, slug: str) -> ExternalTeam | None:
        data = await self._request("find_team", "GET", "/v2/teams", params={"slug": slug})
        for item in data or []:
            if item.get("slug") == slug:
                return ExternalTeam(id=int(item["id"]), name=item["name"], slug=item["slug"])
        return None

    # --- memberships ---

    async def create_membership(
        self, team_id: int, user_id: int, role: MembershipRole, accepted: bool = True
    ) -> ExternalMembership:
        data = await self._request(
            "create_membership",
            "POST",
            f"/v2/teams/{team_id}/memberships",
            json={"userId": user_id, "role": role.value, "accepted": accepted},
        )
        return _membership(data)

    async def find_membership(
        self, team_id: int, user_id: int
    ) -> ExternalMembership | None:
        data = await self._request(
            "find_membership",
            "GET",
            f"/v2/teams/{team_id}/memberships",
            params={"userId": user_id},
        )
        for item in data or []:
            if int(item["userId"]) == user_id:
                return _membership(item)
        return None

    async def update_membership_role(
        self, team_id: int, membership_id: int, role: MembershipRole
    ) -> ExternalMembership:
        data = await self._request(
            "update_membership",
            "PATCH",
            f"/v2/teams/{team_id}/memberships/{membership_id}",
            json={"role": role.value},
        )
        return _membership(data)

    # --- users ---

    async def find_user_by_email(self, email: str) -> ExternalUser | None:
        data = await self._request(
            "find_user", "GET", "/v2/users", params={"email": email}
        )
        # Exact match only: the platform's search may be prefix/case-insensitive
        for item in data or []:
            if item.get("email", "").lower() == email:
                return _user(item)
        return None

    async def create_managed_user(
        self, email: str, username: str, name: str
    ) -> ExternalUser:
        data = await self._request(
            "create_user",
            "POST",
            "/v2/users",
            json={"email": email, "username": username, "name": name},
        )
        return _user(data)

    # --- scheduling ---

    async def get_availability(
        self, event_type_id: int, date_from: datetime, date_to: datetime
    ) -> list[Slot]:
        data = await self._request(
            "get_availability",
            "GET",
            "/v2/slots",
            params={
                "eventTypeId": event_type_id,
                "start": date_from.isoformat(),
                "end": date_to.isoformat(),
            },
        )
        return _slots(data)

    async def create_booking(self, payload: dict[str, Any]) -> ExternalBookingResult:
        data = await self._request("create_booking", "POST", "/v2/bookings", json=payload)
        return ExternalBookingResult(id=int(data["id"]), status=str(data["status"]))

    # --- plumbing ---

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        start = time.monotonic()
        outcome = "error"
        try:
            try:
                resp = await self._client.request(method, path, json=json, params=params)
            except httpx.TransportError as exc:
                # Includes every httpx.TimeoutException subclass
                outcome = "transport_error"
                logger.warning("Scheduling platform %s unreachable: %r", operation, exc)
                raise ExternalTransportError(f"{operation}: {exc!r}") from exc

            if resp.status_code == 409:
                outcome = "conflict"
                raise ExternalConflictError(
                    f"{operation}: {_error_message(resp)}", status_code=409
                )
            if resp.status_code >= 400:
                logger.warning(
                    "Scheduling platform %s failed status=%d body=%s",
                    operation,
                    resp.status_code,
                    resp.text[:500],
                )
                raise ExternalPlatformError(
                    f"{operation}: {_error_message(resp)}", status_code=resp.status_code
                )

            outcome = "ok"
            if resp.status_code == 204 or not resp.content:
                return None
            body = resp.json()
            if isinstance(body, dict) and "data" in body:
                return body["data"]
            return body
        finally:
            EXTERNAL_CALLS.labels(operation=operation, outcome=outcome).inc()
            EXTERNAL_CALL_DURATION.labels(operation=operation).observe(
                time.monotonic() - start
            )


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message", error))
        if error:
            return str(error)
        if "message" in body:
            return str(body["message"])
    return f"HTTP {resp.status_code}"


def _membership(data: dict[str, Any]) -> ExternalMembership:
    return ExternalMembership(
        id=int(data["id"]),
        team_id=int(data["teamId"]),
        user_id=int(data["userId"]),
        role=MembershipRole(data["role"]),
        accepted=bool(data.get("accepted", True)),
    )


def _user(data: dict[str, Any]) -> ExternalUser:
    return ExternalUser(
        id=int(data["id"]),
        email=str(data["email"]).lower(),
        username=str(data.get("username") or ""),
    )


def _slots(data: Any) -> list[Slot]:
    """Accept a flat list or the date-keyed map ``{"2025-01-01": [...]}``."""
    if isinstance(data, dict):
        items = list(itertools.chain.from_iterable(data.values()))
    else:
        items = list(data or [])
    return [
        Slot(
            start=datetime.fromisoformat(item["start"]),
            end=datetime.fromisoformat(item["end"]),
        )
        for item in items
    ]


# ---------------------------------------------------------------------------
# In-memory platform
# ---------------------------------------------------------------------------


class InMemorySchedulingClient:
    """Fake platform holding teams, users, memberships and bookings in dicts."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._teams: dict[int, ExternalTeam] = {}
        self._users: dict[int, ExternalUser] = {}
        self._memberships: dict[tuple[int, int], ExternalMembership] = {}
        self._slots: dict[int, list[Slot]] = {}
        self._bookings: dict[int, dict[str, Any]] = {}

    async def create_team(self, name: str, slug: str) -> ExternalTeam:
        if any(t.slug == slug for t in self._teams.values()):
            raise ExternalConflictError(f"team slug {slug!r} exists", status_code=409)
        team = ExternalTeam(id=next(self._ids), name=name, slug=slug)
        self._teams[team.id] = team
        return team

    async def delete_team(self, team_id: int) -> None:
        if self._teams.pop(team_id, None) is None:
            raise ExternalPlatformError(f"team {team_id} not found", status_code=404)
        for key in [k for k in self._memberships if k[0] == team_id]:
            del self._memberships[key]

    async def find_team_by_slug(self, slug: str) -> ExternalTeam | None:
        for t in self._teams.values():
            if t.slug == slug:
                return t
        return None

    async def create_membership(
        self, team_id: int, user_id: int, role: MembershipRole, accepted: bool = True
    ) -> ExternalMembership:
        if team_id not in self._teams:
            raise ExternalPlatformError(f"team {team_id} not found", status_code=404)
        if user_id not in self._users:
            raise ExternalPlatformError(f"user {user_id} not found", status_code=404)
        if (team_id, user_id) in self._memberships:
            raise ExternalConflictError("membership exists", status_code=409)
        membership = ExternalMembership(
            id=next(self._ids),
            team_id=team_id,
            user_id=user_id,
            role=role,
            accepted=accepted,
        )
        self._memberships[(team_id, user_id)] = membership
        return membership

    async def find_membership(
        self, team_id: int, user_id: int
    ) -> ExternalMembership | None:
        return self._memberships.get((team_id, user_id))

    async def update_membership_role(
        self, team_id: int, membership_id: int, role: MembershipRole
    ) -> ExternalMembership:
        for key, m in self._memberships.items():
            if m.team_id == team_id and m.id == membership_id:
                updated = ExternalMembership(
                    id=m.id,
                    team_id=m.team_id,
                    user_id=m.user_id,
                    role=role,
                    accepted=m.accepted,
                )
                self._memberships[key] = updated
                return updated
        raise ExternalPlatformError(
            f"membership {membership_id} not found", status_code=404
        )

    async def find_user_by_email(self, email: str) -> ExternalUser | None:
        for u in self._users.values():
            if u.email == email:
                return u
        return None

    async def create_managed_user(
        self, email: str, username: str, name: str
    ) -> ExternalUser:
        if any(u.email == email for u in self._users.values()):
            raise ExternalConflictError(f"user {email} exists", status_code=409)
        user = ExternalUser(id=next(self._ids), email=email, username=username)
        self._users[user.id] = user
        return user

    def seed_slots(self, event_type_id: int, slots: list[Slot]) -> None:
        self._slots[event_type_id] = list(slots)

    async def get_availability(
        self, event_type_id: int, date_from: datetime, date_to: datetime
    ) -> list[Slot]:
        return [
            s
            for s in self._slots.get(event_type_id, [])
            if s.start >= date_from and s.end <= date_to
        ]

    async def create_booking(self, payload: dict[str, Any]) -> ExternalBookingResult:
        booking_id = next(self._ids)
        self._bookings[booking_id] = dict(payload)
        return ExternalBookingResult(id=booking_id, status="ACCEPTED")


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if SETTINGS.scheduling_api_url:
    scheduling_client: SchedulingClient = HttpSchedulingClient(
        SETTINGS.scheduling_api_url,
        SETTINGS.scheduling_api_key or "",
        timeout_seconds=SETTINGS.scheduling_timeout_seconds,
    )
else:
    scheduling_client = InMemorySchedulingClient()
