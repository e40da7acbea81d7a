"""
DI Conformance - conformance harness for EdDSA Data Integrity proofs.

Supports:
- eddsa-rdfc-2022 and eddsa-jcs-2022 issuers and verifiers (VC API)
- Multikey verification methods (did:key, did:web)
- base58-btc multibase and multicodec decoding
- Implementation x rule conformance matrices
"""

from di_conformance.assertions import (
    AssertionFailure,
    ProofBundle,
    Rule,
    RuleResult,
    create_rules,
    data_model_rules,
    verification_method_rules,
    verifier_rules,
)
from di_conformance.did_resolver import DocumentLoader, ResolutionError
from di_conformance.endpoints import (
    CapabilitySet,
    Endpoint,
    Implementation,
    ImplementationRegistry,
)
from di_conformance.fixtures import TestData, generate, generate_test_data
from di_conformance.issuance import IssuanceError, VerificationError, create_initial_vc
from di_conformance.multiformats import DecodeError, decode, encode, strip_multicodec_prefix
from di_conformance.report import CellStatus, Matrix, MatrixCell
from di_conformance.runner import MatrixRunner
from di_conformance.verification_method import VerificationMethodResolver

__version__ = "0.1.0"

__all__ = [
    "AssertionFailure",
    "CapabilitySet",
    "CellStatus",
    "DecodeError",
    "DocumentLoader",
    "Endpoint",
    "Implementation",
    "ImplementationRegistry",
    "IssuanceError",
    "Matrix",
    "MatrixCell",
    "MatrixRunner",
    "ProofBundle",
    "ResolutionError",
    "Rule",
    "RuleResult",
    "TestData",
    "VerificationError",
    "VerificationMethodResolver",
    "create_initial_vc",
    "create_rules",
    "data_model_rules",
    "decode",
    "encode",
    "generate",
    "generate_test_data",
    "strip_multicodec_prefix",
    "verification_method_rules",
    "verifier_rules",
]
