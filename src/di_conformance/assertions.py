"""
Assertion rules for EdDSA Data Integrity proofs.

Every rule checks one normative statement of
https://www.w3.org/TR/vc-di-eddsa/ against a ``ProofBundle``: the issued
credential, its proofs and the documents resolved for them. Rules do not
depend on each other.
"""

from __future__ import annotations

import copy
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable

from di_conformance.did_resolver import ResolutionError
from di_conformance.endpoints import Endpoint
from di_conformance.fixtures import generate
from di_conformance.issuance import VerificationError, get_proofs, verify_credential
from di_conformance.multiformats import (
    BASE58_BTC_PREFIX,
    DecodeError,
    decode,
    is_base58,
    is_multibase_base58,
)
from di_conformance.report import CellStatus, FailureKind
from di_conformance.verification_method import (
    ControllerDocument,
    VerificationMethodDocument,
)

CRYPTOSUITES = ["eddsa-rdfc-2022", "eddsa-jcs-2022"]
VC_DI_EDDSA_URL = "https://w3c.github.io/vc-di-eddsa/"

MULTIKEY_ED25519_LENGTH = 34
SIGNATURE_LENGTHS = {32: 64, 57: 114}
DATE_PROPERTIES = ("issuanceDate", "expirationDate", "validFrom", "validUntil")


class AssertionFailure(AssertionError):
    """A normative statement does not hold for an implementation."""


class SkipRule(Exception):
    """The rule does not apply and is recorded as skipped."""


class Requirement(Enum):
    """Data a rule needs from the column setup."""

    CREDENTIAL = "credential"
    VERIFICATION_METHODS = "verification_methods"
    CONTROLLERS = "controllers"
    VERIFIER = "verifier"


def ensure(condition: Any, reason: str) -> None:
    """Raise ``AssertionFailure`` with ``reason`` unless ``condition`` holds."""
    if not condition:
        raise AssertionFailure(reason)


@dataclass
class ProofBundle:
    """Everything a rule may inspect for one implementation."""

    credential: dict[str, Any] | None
    proofs: list[dict[str, Any]] = field(default_factory=list)
    verification_method_documents: list[VerificationMethodDocument] = field(
        default_factory=list
    )
    controller_documents: list[ControllerDocument] = field(default_factory=list)
    verifier: Endpoint | None = None
    unsigned: dict[str, Any] | None = None

    @classmethod
    def from_credential(cls, credential: dict[str, Any] | None, **kwargs: Any) -> ProofBundle:
        return cls(credential=credential, proofs=get_proofs(credential), **kwargs)

    def method_for(self, proof: dict[str, Any]) -> VerificationMethodDocument | None:
        """The resolved verification method of ``proof``.

        Methods are resolved in proof order, so position is tried before id.
        """
        for candidate, document in zip(self.proofs, self.verification_method_documents):
            if candidate is proof:
                return document
        vm_id = proof.get("verificationMethod")
        for document in self.verification_method_documents:
            if document.id == vm_id:
                return document
        return None

    def suite_proofs(self, cryptosuites: Iterable[str]) -> list[dict[str, Any]]:
        """Proofs whose cryptosuite is one of ``cryptosuites``."""
        suites = list(cryptosuites)
        return [
            p for p in self.proofs
            if isinstance(p, dict) and p.get("cryptosuite") in suites
        ]


@dataclass
class RuleResult:
    """Outcome of a rule."""

    status: CellStatus
    reason: str = ""
    kind: FailureKind | None = None

    @property
    def passed(self) -> bool:
        return self.status == CellStatus.PASS


Check = Callable[[ProofBundle], "Awaitable[None] | None"]


@dataclass(frozen=True)
class Rule:
    """A normative statement and the check that tests it."""

    id: str
    title: str
    check: Check
    requires: frozenset[Requirement] = frozenset({Requirement.CREDENTIAL})
    link: str | None = None

    async def evaluate(self, bundle: ProofBundle) -> RuleResult:
        """Run the check and classify its outcome."""
        try:
            outcome = self.check(bundle)
            if inspect.isawaitable(outcome):
                await outcome
        except SkipRule as e:
            return RuleResult(CellStatus.SKIP, str(e))
        except AssertionFailure as e:
            return RuleResult(CellStatus.FAIL, str(e), FailureKind.IMPLEMENTATION)
        except DecodeError as e:
            return RuleResult(
                CellStatus.FAIL, f"Decode error: {e}", FailureKind.IMPLEMENTATION
            )
        except ResolutionError as e:
            kind = FailureKind.ENVIRONMENT if e.transport else FailureKind.IMPLEMENTATION
            return RuleResult(CellStatus.FAIL, f"Resolution error: {e}", kind)
        except VerificationError as e:
            kind = FailureKind.ENVIRONMENT if e.transport else FailureKind.IMPLEMENTATION
            return RuleResult(CellStatus.FAIL, f"Verifier error: {e}", kind)
        return RuleResult(CellStatus.PASS)


def _require_verification_methods(bundle: ProofBundle) -> None:
    ensure(
        bundle.verification_method_documents,
        'Expected at least one "verificationMethodDocument".',
    )


def _require_suite_proofs(bundle: ProofBundle, cryptosuites: list[str]) -> list[dict[str, Any]]:
    ensure(bundle.credential is not None, "Expected issuer to have issued a credential.")
    ensure(bundle.proofs, "Expected credential to have a proof.")
    proofs = bundle.suite_proofs(cryptosuites)
    ensure(
        len(proofs) >= 1,
        f"Expected at least one {' or '.join(cryptosuites)} cryptosuite.",
    )
    return proofs


# Checks used by the rule sets below.


def cryptosuite_is(cryptosuite: str) -> Check:
    def check(bundle: ProofBundle) -> None:
        ensure(
            any(
                isinstance(p, dict) and p.get("cryptosuite") == cryptosuite
                for p in bundle.proofs
            ),
            'Expected at least one proof to have "cryptosuite" with the value '
            f'"{cryptosuite}".',
        )
    return check


def verification_method_is_multikey(bundle: ProofBundle) -> None:
    _require_verification_methods(bundle)
    ensure(
        any(d.type == "Multikey" for d in bundle.verification_method_documents),
        'Expected at least one proof to have "type" property value "Multikey".',
    )


def proof_purpose_matches_controller(bundle: ProofBundle) -> None:
    _require_verification_methods(bundle)
    ensure(
        any(
            controller.declares(proof.get("proofPurpose"))
            for proof in bundle.proofs
            if isinstance(proof, dict)
            for controller in bundle.controller_documents
        ),
        'Expected "proof.proofPurpose" field to match the verification method '
        "controller.",
    )


def _check_public_key_prefix(document: VerificationMethodDocument) -> None:
    value = document.public_key_multibase
    ensure(
        isinstance(value, str) and value.startswith(BASE58_BTC_PREFIX),
        'Expected "publicKeyMultibase" value of the verification method to start '
        f'with the base58-btc multibase prefix "{BASE58_BTC_PREFIX}".',
    )
    ensure(
        is_base58(value),
        'Expected "publicKeyMultibase" value of the verification method to be '
        "multibase base58-btc encoded value",
    )


def public_key_is_base58btc(bundle: ProofBundle) -> None:
    _require_verification_methods(bundle)
    for document in bundle.verification_method_documents:
        _check_public_key_prefix(document)


def public_key_encoding(bundle: ProofBundle) -> None:
    _require_verification_methods(bundle)
    for document in bundle.verification_method_documents:
        _check_public_key_prefix(document)
        key_bytes = decode(document.public_key_multibase)
        ensure(
            len(key_bytes) == MULTIKEY_ED25519_LENGTH,
            'Expected "publicKeyMultibase" value of the verification method to '
            f"be {MULTIKEY_ED25519_LENGTH} bytes in length (got {len(key_bytes)}).",
        )


def signature_length(cryptosuite: str) -> Check:
    def check(bundle: ProofBundle) -> None:
        for proof in _require_suite_proofs(bundle, [cryptosuite]):
            ensure(proof.get("proofValue"), "Expected a proof value on the proof.")
            value_bytes = decode(proof["proofValue"])
            ensure(proof.get("verificationMethod"), "Expected a verificationMethod on the proof.")
            document = bundle.method_for(proof)
            ensure(
                document is not None,
                f"Expected verification method {proof['verificationMethod']} to be resolved.",
            )
            key_bytes = document.public_key_bytes()
            expected = SIGNATURE_LENGTHS.get(len(key_bytes))
            ensure(
                expected is not None,
                "Expected public key length to be either 32 or 57 bytes "
                f"(key length not 32 or 57, got {len(key_bytes)}).",
            )
            ensure(
                len(value_bytes) == expected,
                f"Expected {expected} byte proofValue for {len(key_bytes)} byte key "
                f"(got {len(value_bytes)}).",
            )
    return check


async def expect_verification_success(
    credential: dict[str, Any] | None, verifier: Endpoint
) -> None:
    """The verifier MUST accept ``credential`` with HTTP 200.

    Raises:
        AssertionFailure: If the verifier errors or answers with another status.
        VerificationError: If the verifier could not be reached.
    """
    response = await verify_credential(verifier, credential)
    error, result = response.error, response.result
    if error is not None and error.transport:
        raise VerificationError(error.message, transport=True)
    ensure(result is not None, "Expected a result from verifier.")
    ensure(error is None, "Expected verifier to not error.")
    ensure(result.status is not None, "Expected verifier to return an HTTP Status code")
    ensure(result.status != 400, "Expected status code to not be 400.")
    ensure(result.status == 200, "Expected HTTP Status code 200.")


async def expect_verification_failure(
    credential: dict[str, Any] | None, verifier: Endpoint
) -> None:
    """The verifier MUST reject ``credential`` with HTTP 400.

    Raises:
        AssertionFailure: If the verifier accepts it or fails with another status.
        VerificationError: If the verifier could not be reached.
    """
    response = await verify_credential(verifier, credential)
    error, result = response.error, response.result
    if error is not None and error.transport:
        raise VerificationError(error.message, transport=True)
    ensure(result is None, "Expected no result from verifier.")
    ensure(error is not None, "Expected verifier to error.")
    ensure(error.status is not None, "Expected verifier to return an HTTP Status code")
    ensure(error.status == 400, "Expected HTTP Status code 400 invalid input!")


def tamper_proof_value(credential: dict[str, Any]) -> dict[str, Any]:
    """Copy ``credential`` and change one character of every ``proofValue``.

    The replacement keeps the value valid base58-btc so only the signature
    is wrong, not its encoding.
    """
    tampered = copy.deepcopy(credential)
    for proof in get_proofs(tampered):
        if not isinstance(proof, dict):
            continue
        value = proof.get("proofValue")
        if not isinstance(value, str) or len(value) < 2:
            continue
        index = len(value) // 2
        replacement = "2" if value[index] != "2" else "3"
        proof["proofValue"] = value[:index] + replacement + value[index + 1:]
    return tampered


async def proof_verifies(bundle: ProofBundle) -> None:
    if bundle.verifier is None:
        raise SkipRule("Implementation has no VC API compatible verifier.")
    ensure(bundle.credential is not None, "Expected issuer to have issued a credential.")
    await expect_verification_success(bundle.credential, bundle.verifier)


async def tampered_proof_rejected(bundle: ProofBundle) -> None:
    if bundle.verifier is None:
        raise SkipRule("Implementation has no VC API compatible verifier.")
    ensure(bundle.proofs, "Expected credential to have a proof.")
    await expect_verification_failure(
        tamper_proof_value(bundle.credential), bundle.verifier
    )


def proof_type_is_data_integrity(cryptosuites: list[str]) -> Check:
    def check(bundle: ProofBundle) -> None:
        for proof in _require_suite_proofs(bundle, cryptosuites):
            ensure(proof.get("type"), "Expected a type identifier on the proof.")
            ensure(
                proof["type"] == "DataIntegrityProof",
                "Expected DataIntegrityProof type.",
            )
    return check


def cryptosuite_allowed(cryptosuites: list[str]) -> Check:
    def check(bundle: ProofBundle) -> None:
        for proof in _require_suite_proofs(bundle, cryptosuites):
            ensure(
                proof.get("cryptosuite"),
                "Expected a cryptosuite identifier on the proof.",
            )
            ensure(
                proof["cryptosuite"] in cryptosuites,
                f"Expected {' or '.join(cryptosuites)} cryptosuite.",
            )
    return check


def proof_value_is_base58btc(cryptosuites: list[str]) -> Check:
    def check(bundle: ProofBundle) -> None:
        for proof in _require_suite_proofs(bundle, cryptosuites):
            ensure(proof.get("proofValue"), "Expected a proof value on the proof.")
            ensure(
                is_multibase_base58(proof["proofValue"]),
                'Expected "proofValue" to be a multibase base58-btc encoded value.',
            )
            ensure(decode(proof["proofValue"]), "Expected to have a decoded proofValue.")
    return check


def credential_shape(bundle: ProofBundle) -> None:
    """Compare the issued credential with the fixture it was issued from.

    Without a recorded fixture the default ``validVc`` template is used.
    """
    template = bundle.unsigned or generate("validVc")
    credential = bundle.credential
    ensure(isinstance(credential, dict), "expected credential to exist")
    ensure("@context" in credential, "Expected credential to have @context.")
    contexts = credential["@context"]
    if isinstance(contexts, str):
        contexts = [contexts]
    ensure(
        isinstance(contexts, list),
        "Expected @context to be an array or a string.",
    )
    base_context = template["@context"][0]
    ensure(base_context in contexts, f"Expected @context to include {base_context}.")
    ensure(
        credential.get("type") == template["type"],
        f"Expected type to be {template['type']}.",
    )
    ensure(isinstance(credential.get("id"), str), "Expected id to be a string.")
    for name in DATE_PROPERTIES:
        if name in template:
            ensure(isinstance(credential.get(name), str), f"Expected {name} to be a string.")
    if isinstance(template.get("issuer"), dict):
        issuer = credential.get("issuer")
        ensure(
            isinstance(issuer, dict) and isinstance(issuer.get("id"), str),
            "Expected issuer to be an object with a string id.",
        )
    else:
        ensure(isinstance(credential.get("issuer"), str), "Expected issuer to be a string.")
    ensure(
        isinstance(credential.get("credentialSubject"), dict),
        "Expected credentialSubject to be an object.",
    )
    ensure(isinstance(credential.get("proof"), dict), "Expected proof to be an object.")


def secret_keys_out_of_scope(bundle: ProofBundle) -> None:
    raise SkipRule("Testing secret keys is out of scope.")


# Rule sets.

_CREDENTIAL = frozenset({Requirement.CREDENTIAL})
_METHODS = frozenset({Requirement.CREDENTIAL, Requirement.VERIFICATION_METHODS})
_CONTROLLERS = _METHODS | {Requirement.CONTROLLERS}
_VERIFIER = frozenset({Requirement.CREDENTIAL, Requirement.VERIFIER})


def create_rules(cryptosuite: str) -> list[Rule]:
    """Rules checked against credentials issued with ``cryptosuite``."""
    return [
        Rule(
            id="cryptosuite-identity",
            title=f'The field "cryptosuite" MUST be "{cryptosuite}".',
            check=cryptosuite_is(cryptosuite),
            link=f"{VC_DI_EDDSA_URL}#dataintegrityproof",
        ),
        Rule(
            id="verification-method-type",
            title='Dereferencing the "verificationMethod" MUST result in an object '
            'containing a type property with "Multikey" value.',
            check=verification_method_is_multikey,
            requires=_METHODS,
            link=f"{VC_DI_EDDSA_URL}#multikey",
        ),
        Rule(
            id="proof-purpose-binding",
            title='The "proof.proofPurpose" field MUST match the verification '
            "relationship expressed by the verification method controller.",
            check=proof_purpose_matches_controller,
            requires=_CONTROLLERS,
        ),
        Rule(
            id="key-encoding",
            title='The "publicKeyMultibase" value of the verification method MUST be '
            "34 bytes in length and starts with the base-58-btc prefix (z).",
            check=public_key_encoding,
            requires=_METHODS,
            link=f"{VC_DI_EDDSA_URL}#multikey",
        ),
        Rule(
            id="signature-length",
            title='"proofValue" field when decoded to raw bytes, MUST be 64 bytes in '
            "length if the associated public key is 32 bytes or 114 bytes in length "
            "if the public key is 57 bytes.",
            check=signature_length(cryptosuite),
            requires=_METHODS,
        ),
        Rule(
            id="proof-verifies",
            title='"proof" MUST verify when using a conformant verifier.',
            check=proof_verifies,
            requires=_VERIFIER,
        ),
        Rule(
            id="tampered-proof-rejected",
            title='A "proofValue" that has been modified MUST NOT verify.',
            check=tampered_proof_rejected,
            requires=_VERIFIER,
        ),
    ]


def data_model_rules(cryptosuites: list[str] | None = None) -> list[Rule]:
    """Rules for the DataIntegrityProof representation."""
    cryptosuites = list(cryptosuites or CRYPTOSUITES)
    return [
        Rule(
            id="proof-type",
            title="The type property MUST be DataIntegrityProof.",
            check=proof_type_is_data_integrity(cryptosuites),
            link=f"{VC_DI_EDDSA_URL}#:~:text=The%20type%20property%20MUST%20be%20DataIntegrityProof",
        ),
        Rule(
            id="cryptosuite-allowed",
            title="The cryptosuite property of the proof MUST be "
            f"{' or '.join(cryptosuites)}.",
            check=cryptosuite_allowed(cryptosuites),
        ),
        Rule(
            id="proof-value-encoding",
            title="The proofValue property of the proof MUST be a detached EdDSA "
            "signature produced according to [RFC8032], encoded using the "
            "base-58-btc header and alphabet as described in the Multibase section "
            "of Controller Documents 1.0.",
            check=proof_value_is_base58btc(cryptosuites),
        ),
        Rule(
            id="credential-shape",
            title="The issued credential MUST have the properties of the "
            "Verifiable Credential it was issued from.",
            check=credential_shape,
        ),
    ]


def verification_method_rules() -> list[Rule]:
    """Rules for Multikey verification methods."""
    return [
        Rule(
            id="public-key-multibase-prefix",
            title="The publicKeyMultibase value of the verification method MUST start "
            "with the base-58-btc prefix (z), as defined in the Multibase section of "
            "Controller Documents 1.0.",
            check=public_key_is_base58btc,
            requires=_METHODS,
        ),
        Rule(
            id="public-key-other-encodings",
            title="Any other encoding MUST NOT be allowed.",
            check=public_key_is_base58btc,
            requires=_METHODS,
        ),
        Rule(
            id="secret-key-multibase-prefix",
            title="The secretKeyMultibase value of the verification method MUST start "
            "with the base-58-btc prefix (z), as defined in the Multibase section of "
            "Controller Documents 1.0.",
            check=secret_keys_out_of_scope,
            requires=frozenset(),
        ),
        Rule(
            id="secret-key-other-encodings",
            title="Any other encoding MUST NOT be allowed. (secretKeyMultibase)",
            check=secret_keys_out_of_scope,
            requires=frozenset(),
        ),
    ]


def verifier_rules() -> list[Rule]:
    """Rules checked against verifiers with a reference credential."""
    return [
        Rule(
            id="verifier-accepts-valid",
            title="A conformant verifier MUST verify a valid proof.",
            check=proof_verifies,
            requires=_VERIFIER,
        ),
        Rule(
            id="verifier-rejects-tampered",
            title='A conformant verifier MUST reject a proof whose "proofValue" '
            "has been modified.",
            check=tampered_proof_rejected,
            requires=_VERIFIER,
        ),
    ]


RULE_SETS: dict[str, Callable[[str], list[Rule]]] = {
    "create": create_rules,
    "data-model": lambda cryptosuite: data_model_rules(),
    "verification-methods": lambda cryptosuite: verification_method_rules(),
    "verify": lambda cryptosuite: verifier_rules(),
}
