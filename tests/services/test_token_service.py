"""Access token validation tests.

Covers both key modes: the ephemeral dev/test pair that can mint its own
tokens, and a configured identity-provider public key that can only
verify.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import jwt as pyjwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from fastapi.testclient import TestClient

from calsync.services import token_service


def _pem(public_key) -> str:
    return public_key.public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def _provider_token(private_key: ec.EllipticCurvePrivateKey, **overrides) -> str:
    now = datetime.now(UTC)
    claims = {
        "sub": "idp-user-1",
        "iss": token_service.ISSUER,
        "aud": token_service.AUDIENCE,
        "exp": now + timedelta(minutes=5),
        "iat": now,
        "jti": "abc",
        "roles": ["admin"],
    }
    claims.update(overrides)
    return pyjwt.encode(claims, private_key, algorithm="ES256")


@pytest.fixture
def provider_key(monkeypatch: pytest.MonkeyPatch) -> ec.EllipticCurvePrivateKey:
    """Switch the validator to a configured identity-provider key."""
    idp_private = ec.generate_private_key(ec.SECP256R1())
    signing, verifying = token_service.load_keys(_pem(idp_private.public_key()))
    monkeypatch.setattr(token_service, "_private_key", signing)
    monkeypatch.setattr(token_service, "_public_key", verifying)
    return idp_private


def test_ephemeral_keys_round_trip() -> None:
    token = token_service.create_access_token(sub="alice", roles=["admin"])
    claims = token_service.decode_access_token(token)
    assert claims["sub"] == "alice"
    assert claims["roles"] == ["admin"]


def test_load_keys_without_pem_generates_pair() -> None:
    signing, verifying = token_service.load_keys(None)
    assert signing is not None
    assert _pem(signing.public_key()) == _pem(verifying)


def test_configured_key_verifies_provider_tokens(
    provider_key: ec.EllipticCurvePrivateKey,
) -> None:
    claims = token_service.decode_access_token(_provider_token(provider_key))
    assert claims["sub"] == "idp-user-1"


def test_configured_key_rejects_locally_minted_tokens(
    provider_key: ec.EllipticCurvePrivateKey,
) -> None:
    stranger = ec.generate_private_key(ec.SECP256R1())
    with pytest.raises(pyjwt.InvalidSignatureError):
        token_service.decode_access_token(_provider_token(stranger))


def test_configured_key_cannot_mint(provider_key: ec.EllipticCurvePrivateKey) -> None:
    with pytest.raises(RuntimeError, match="identity provider"):
        token_service.create_access_token(sub="alice")


def test_wrong_audience_is_rejected(provider_key: ec.EllipticCurvePrivateKey) -> None:
    with pytest.raises(pyjwt.InvalidAudienceError):
        token_service.decode_access_token(_provider_token(provider_key, aud="other-service"))


def test_load_keys_rejects_non_ec_key() -> None:
    rsa_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    with pytest.raises(ValueError, match="EC"):
        token_service.load_keys(_pem(rsa_key.public_key()))


def test_api_accepts_provider_token(
    client: TestClient, provider_key: ec.EllipticCurvePrivateKey
) -> None:
    resp = client.get(
        "/v1/organizations/00000000-0000-0000-0000-000000000000",
        headers={"Authorization": f"Bearer {_provider_token(provider_key)}"},
    )
    # Authenticated and authorized: the org simply does not exist
    assert resp.status_code == 404
