"""Demo: provision an organization, onboard an expert and book a slot.

Everything runs against the in-memory platform and registry, so no
external services are needed.

Run with:
    python scripts/demo_provisioning_flow.py
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta
from uuid import UUID

from fastapi.testclient import TestClient

from calsync.clients import scheduling
from calsync.core.config import SETTINGS
from calsync.main import app
from calsync.models.booking import Slot
from calsync.services import token_service, wiring
from calsync.services.identity_resolver import DefaultAdministrator
from calsync.services.task_queue import task_queue
from calsync.services.webhook_signing import generate_signature
from calsync.worker import run_once

ADMIN_EMAIL = "owner@demo.test"
EVENT_TYPE_ID = 9
SLOT_START = datetime(2026, 11, 2, 9, 0, tzinfo=UTC)


def main() -> None:
    client = TestClient(app)
    platform = scheduling.scheduling_client
    if not isinstance(platform, scheduling.InMemorySchedulingClient):
        raise SystemExit("Unset SCHEDULING_API_URL: the demo seeds the in-memory platform")

    # ── Seed the platform ───────────────────────────────────────────
    admin = asyncio.run(platform.create_managed_user(ADMIN_EMAIL, "owner", "Owner"))
    wiring.default_admin = DefaultAdministrator(ADMIN_EMAIL)
    platform.seed_slots(
        EVENT_TYPE_ID, [Slot(start=SLOT_START, end=SLOT_START + timedelta(minutes=30))]
    )
    admin_headers = {
        "Authorization": "Bearer "
        + token_service.create_access_token(sub="demo-admin", roles=["admin"])
    }
    user_headers = {
        "Authorization": "Bearer " + token_service.create_access_token(sub="demo-parent")
    }

    # ── Step 1: provision ───────────────────────────────────────────
    r = client.post(
        "/v1/organizations",
        json={"name": "Lincoln High", "slug": "lincoln-high"},
        headers=admin_headers,
    )
    org = r.json()
    print(f"1. POST /v1/organizations          → {r.status_code}  team={org['external_team_id']}")
    print(f"   default admin user={admin.id} owns the team")

    # ── Step 2: same slug again ─────────────────────────────────────
    r = client.post(
        "/v1/organizations",
        json={"name": "Lincoln High", "slug": "lincoln-high"},
        headers=admin_headers,
    )
    print(f"2. POST /v1/organizations (again)  → {r.status_code}  {r.json()['detail']['code']}")

    # ── Step 3: onboard an expert ───────────────────────────────────
    r = client.post(
        f"/v1/organizations/{org['id']}/staff",
        json={"email": "jane@school.edu", "display_name": "Jane", "event_type_id": EVENT_TYPE_ID},
        headers=admin_headers,
    )
    staff = r.json()
    print(f"3. POST .../staff                  → {r.status_code}  user={staff['external_user_id']}")

    # ── Step 4: availability ────────────────────────────────────────
    r = client.get(
        f"/v1/experts/{staff['id']}/availability",
        params={
            "start": SLOT_START.isoformat(),
            "end": (SLOT_START + timedelta(days=1)).isoformat(),
        },
        headers=user_headers,
    )
    print(f"4. GET  .../availability           → {r.status_code}  {len(r.json())} slot(s)")

    # ── Step 5: book with an idempotency key, twice ─────────────────
    body = {
        "start": SLOT_START.isoformat(),
        "end": (SLOT_START + timedelta(minutes=30)).isoformat(),
        "attendee_email": "parent@home.test",
        "attendee_name": "Pat Parent",
    }
    headers = {**user_headers, "Idempotency-Key": "demo-booking-1"}
    first = client.post(f"/v1/experts/{staff['id']}/bookings", json=body, headers=headers).json()
    second = client.post(f"/v1/experts/{staff['id']}/bookings", json=body, headers=headers).json()
    print(
        f"5. POST .../bookings (x2)          → same booking: {first['id'] == second['id']}"
        f"  status={first['status']}"
    )

    # ── Step 6: platform cancels it ─────────────────────────────────
    if SETTINGS.webhook_secret is None:
        print("6. (skipped: set WEBHOOK_SECRET to sign a status notification)")
        return
    secret = SETTINGS.webhook_secret
    payload = json.dumps(
        {"booking_id": first["external_booking_id"], "status": "CANCELLED"}
    ).encode()
    signature, ts = generate_signature(payload, secret)
    r = client.post(
        "/v1/webhooks/booking-status",
        content=payload,
        headers={
            "X-Webhook-Signature": signature,
            "X-Webhook-Timestamp": str(ts),
            "Content-Type": "application/json",
        },
    )
    print(f"6. POST /v1/webhooks/booking-status → {r.status_code}")
    if r.status_code == 202:
        asyncio.run(run_once(timeout=0))
        booking = asyncio.run(wiring.booking_repo.get_by_id(UUID(first["id"])))
        print(f"   worker applied it: status={booking.status.value}")
    print(f"   queue depth now {asyncio.run(task_queue.queue_length('booking_status'))}")


if __name__ == "__main__":
    main()
