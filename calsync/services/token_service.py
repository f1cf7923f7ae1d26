"""JWT access token validation (ES256).

Tokens are issued by the organization's identity provider; this service
only validates them.  Management endpoints (provisioning, staff
onboarding) need the ``admin`` role; expert endpoints accept any valid
token.

KEYS
-----
  JWT_PUBLIC_KEY set    → verify with the identity provider's public key
                          (PEM).  This process cannot mint tokens.
  JWT_PUBLIC_KEY unset  → dev/test only: an ephemeral key pair generated
                          on import.  create_access_token signs with it,
                          so local tooling and tests can authenticate.

Configuration refuses APP_ENV=prod without JWT_PUBLIC_KEY.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from calsync.core.config import SETTINGS

ALGORITHM = "ES256"
ISSUER = SETTINGS.jwt_issuer
AUDIENCE = SETTINGS.jwt_audience
ACCESS_TOKEN_TTL_MIN = 15


def load_keys(
    public_key_pem: str | None,
) -> tuple[ec.EllipticCurvePrivateKey | None, ec.EllipticCurvePublicKey]:
    """Return (signing key or None, verifying key)."""
    if public_key_pem is None:
        private_key = ec.generate_private_key(ec.SECP256R1())
        return private_key, private_key.public_key()

    public_key = serialization.load_pem_public_key(public_key_pem.encode("ascii"))
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        raise ValueError("JWT_PUBLIC_KEY must be an EC (P-256) public key")
    return None, public_key


# ---------------------------------------------------------------------------
# Key management
# ---------------------------------------------------------------------------
_private_key, _public_key = load_keys(SETTINGS.jwt_public_key)


def create_access_token(
    *,
    sub: str,
    scope: str = "",
    roles: list[str] | None = None,
) -> str:
    """Build and sign a JWT access token (sub, iss, aud, exp, iat, jti, scope, roles)."""
    if _private_key is None:
        raise RuntimeError("tokens are issued by the identity provider (JWT_PUBLIC_KEY is set)")
    now = datetime.now(UTC)
    payload = {
        "sub": sub,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "exp": now + timedelta(minutes=ACCESS_TOKEN_TTL_MIN),
        "iat": now,
        "jti": str(uuid.uuid4()),
        "scope": scope,
        "roles": roles or ["user"],
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and claims, return the payload.

    Pins algorithm to ES256 to prevent alg:none and alg-switching attacks.
    Validates exp, iss, and aud automatically via PyJWT options.

    Raises jwt.ExpiredSignatureError, jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=AUDIENCE,
        options={"require": ["sub", "exp", "iat", "jti"]},
    )
