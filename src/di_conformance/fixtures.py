"""
Verifiable Credential fixtures used as issuer inputs.

Templates are fixed documents. Callers always receive a fresh deep copy, and
anything random (the credential ``id``) is added by the caller.
"""

from __future__ import annotations

import copy
from types import MappingProxyType
from typing import Any, Callable, Mapping

VC_V1_CONTEXT = "https://www.w3.org/2018/credentials/v1"
VC_V2_CONTEXT = "https://www.w3.org/ns/credentials/v2"
EXAMPLES_V1_CONTEXT = "https://www.w3.org/2018/credentials/examples/v1"

ISSUANCE_DATE = "2020-03-10T04:24:12.164Z"
EXPIRATION_DATE = "2030-03-10T04:24:12.164Z"


class FixtureError(LookupError):
    """Raised when an unknown fixture template is requested."""


def _valid_vc() -> dict[str, Any]:
    return {
        "@context": [VC_V1_CONTEXT, EXAMPLES_V1_CONTEXT],
        "type": ["VerifiableCredential"],
        "credentialSubject": {
            "id": "did:example:ebfeb1f712ebc6f1c276e12ec21",
        },
        "issuanceDate": ISSUANCE_DATE,
        "expirationDate": EXPIRATION_DATE,
    }


def _valid_vc_v2() -> dict[str, Any]:
    return {
        "@context": [VC_V2_CONTEXT],
        "type": ["VerifiableCredential"],
        "credentialSubject": {
            "id": "did:example:ebfeb1f712ebc6f1c276e12ec21",
        },
        "validFrom": ISSUANCE_DATE,
        "validUntil": EXPIRATION_DATE,
    }


def _issuer_object_vc() -> dict[str, Any]:
    vc = _valid_vc()
    vc["issuer"] = {"id": "", "name": "Conformance Test Issuer"}
    return vc


TEMPLATES: Mapping[str, Callable[[], dict[str, Any]]] = MappingProxyType({
    "validVc": _valid_vc,
    "validVcV2": _valid_vc_v2,
    "issuerObjectVc": _issuer_object_vc,
})


def generate(template_name: str) -> dict[str, Any]:
    """Build a new credential from a named template.

    Raises:
        FixtureError: If no template has that name.
    """
    try:
        factory = TEMPLATES[template_name]
    except KeyError as e:
        raise FixtureError(f"Unknown credential template: {template_name}") from e
    return factory()


class TestData:
    """Read-only store of generated credentials."""

    __test__ = False  # not a pytest class

    def __init__(self, names: list[str] | None = None) -> None:
        names = list(TEMPLATES) if names is None else names
        self._credentials = MappingProxyType(
            {name: generate(name) for name in names}
        )

    def names(self) -> list[str]:
        """Names of the credentials in the store."""
        return list(self._credentials)

    def clone(self, name: str) -> dict[str, Any]:
        """Return an independent deep copy of the named credential.

        Raises:
            FixtureError: If the store has no credential of that name.
        """
        try:
            credential = self._credentials[name]
        except KeyError as e:
            raise FixtureError(f"Unknown credential fixture: {name}") from e
        return copy.deepcopy(credential)


def generate_test_data(names: list[str] | None = None) -> TestData:
    """Create the fixture store."""
    return TestData(names)
