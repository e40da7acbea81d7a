"""
Issuing fixtures through an issuer endpoint and submitting credentials to a
verifier endpoint.
"""

from __future__ import annotations

import copy
import json
import logging
import uuid
from typing import Any

from di_conformance.endpoints import Endpoint, EndpointResponse

logger = logging.getLogger(__name__)

DEFAULT_CHECKS = ["proof"]


class IssuanceError(Exception):
    """Raised when an issuer returns an error or a malformed credential."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        body: Any = None,
        transport: bool = False,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body
        self.transport = transport


class VerificationError(Exception):
    """Raised when a verifier returns an error or an unexpected status."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        transport: bool = False,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.transport = transport


def prepare_credential(issuer: Endpoint, vc: dict[str, Any]) -> dict[str, Any]:
    """Copy ``vc`` and give it a fresh ``id`` and the issuer's ``issuer`` id."""
    credential = copy.deepcopy(vc)
    credential["id"] = f"urn:uuid:{uuid.uuid4()}"
    issuer_id = issuer.settings.id
    if isinstance(credential.get("issuer"), dict):
        credential["issuer"]["id"] = issuer_id
    else:
        credential["issuer"] = issuer_id
    return credential


def _unwrap_credential(data: Any) -> Any:
    if isinstance(data, dict) and isinstance(data.get("verifiableCredential"), dict):
        return data["verifiableCredential"]
    return data


async def create_initial_vc(issuer: Endpoint, vc: dict[str, Any]) -> dict[str, Any]:
    """Issue a freshly identified copy of ``vc``.

    Args:
        issuer: Issuer endpoint of the implementation under test.
        vc: Unsigned credential fixture; it is not modified.

    Returns:
        The issued credential.

    Raises:
        IssuanceError: If the issuer errors or returns something that is not
            a credential.
    """
    credential = prepare_credential(issuer, vc)
    body = {"credential": credential, "options": copy.deepcopy(issuer.settings.options)}
    response: EndpointResponse = await issuer.post(json=body)

    if response.error:
        logger.warning("Issuance failed for %s", issuer.settings.endpoint)
        logger.error("%s", response.error.message)
        logger.error(
            "%s",
            json.dumps({"body": body, "error": response.error.data}, indent=2, default=str),
        )
        raise IssuanceError(
            f"Issuer {issuer.settings.endpoint} failed: {response.error.message}",
            status=response.error.status,
            body=body,
            transport=response.error.transport,
        )

    issued = _unwrap_credential(response.data)
    if not isinstance(issued, dict):
        logger.warning(
            "Issuer %s returned a non-object credential", issuer.settings.endpoint
        )
        raise IssuanceError(
            f"Issuer {issuer.settings.endpoint} did not return a credential",
            body=body,
        )
    return issued


def get_proofs(credential: dict[str, Any] | None) -> list[dict[str, Any]]:
    """Return the credential's proofs as a list (empty if there are none)."""
    if not isinstance(credential, dict):
        return []
    proof = credential.get("proof")
    if proof is None:
        return []
    if isinstance(proof, list):
        return [p for p in proof if p is not None]
    return [proof]


async def verify_credential(
    verifier: Endpoint,
    credential: dict[str, Any],
    checks: list[str] | None = None,
) -> EndpointResponse:
    """Submit a credential to a verifier.

    ``checks`` is passed through to the verifier untouched.
    """
    body = {
        "verifiableCredential": credential,
        "options": {"checks": list(DEFAULT_CHECKS if checks is None else checks)},
    }
    return await verifier.post(json=body)
