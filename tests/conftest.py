"""Shared fixtures for the conformance harness tests."""

import copy
import json

import pytest
from cryptography.hazmat.primitives.asymmetric.ed448 import Ed448PrivateKey
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from di_conformance.endpoints import CapabilitySet, Endpoint, EndpointSettings
from di_conformance.multiformats import add_multicodec_prefix, encode

ED25519_PUB = 0xED
ED448_PUB = 0x1203

ISSUER_URL = "https://issuer.example.com/credentials/issue"
VERIFIER_URL = "https://verifier.example.com/credentials/verify"


def multikey(private_key, code: int) -> str:
    """Multibase multikey for the public half of ``private_key``."""
    raw = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return encode(add_multicodec_prefix(code, raw))


def did_key(private_key, code: int = ED25519_PUB) -> tuple[str, str]:
    """Return ``(did, verification method id)`` for a did:key."""
    key = multikey(private_key, code)
    did = f"did:key:{key}"
    return did, f"{did}#{key}"


def sign_credential(
    credential: dict,
    private_key,
    verification_method: str,
    cryptosuite: str = "eddsa-rdfc-2022",
    proof_purpose: str = "assertionMethod",
) -> dict:
    """Attach a DataIntegrityProof with a real EdDSA signature.

    The signed bytes are sorted-key JSON; only the proof shape matters here.
    """
    message = json.dumps(credential, sort_keys=True, separators=(",", ":")).encode()
    signed = copy.deepcopy(credential)
    signed["proof"] = {
        "type": "DataIntegrityProof",
        "cryptosuite": cryptosuite,
        "created": "2024-01-01T00:00:00Z",
        "verificationMethod": verification_method,
        "proofPurpose": proof_purpose,
        "proofValue": encode(private_key.sign(message)),
    }
    return signed


def make_endpoint(
    url: str,
    role: str,
    tags=("eddsa-rdfc-2022",),
    issuer_id: str | None = None,
    options: dict | None = None,
) -> Endpoint:
    return Endpoint(
        EndpointSettings(
            endpoint=url,
            id=issuer_id,
            options=options or {},
            tags=CapabilitySet(tags),
        ),
        role=role,
    )


@pytest.fixture
def ed25519_key():
    """A fresh Ed25519 private key."""
    return Ed25519PrivateKey.generate()


@pytest.fixture
def ed448_key():
    """A fresh Ed448 private key."""
    return Ed448PrivateKey.generate()


@pytest.fixture
def ed25519_did(ed25519_key):
    """``(did, verification method id)`` for the Ed25519 key."""
    return did_key(ed25519_key)


@pytest.fixture
def issuer(ed25519_did):
    """Issuer endpoint whose issuer id is the Ed25519 did:key."""
    did, _ = ed25519_did
    return make_endpoint(ISSUER_URL, "issuer", issuer_id=did)


@pytest.fixture
def verifier():
    """Verifier endpoint."""
    return make_endpoint(VERIFIER_URL, "verifier")
