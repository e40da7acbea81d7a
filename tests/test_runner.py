"""Tests for the matrix runner."""

import json

import httpx
import pytest
import respx
from httpx import Response

from di_conformance.assertions import (
    Rule,
    create_rules,
    data_model_rules,
    verification_method_rules,
    verifier_rules,
)
from di_conformance.endpoints import Implementation, ImplementationRegistry
from di_conformance.report import CellStatus, FailureKind
from di_conformance.runner import MatrixRunner, run_matrix

from conftest import sign_credential

RDFC = "eddsa-rdfc-2022"
JCS = "eddsa-jcs-2022"


def implementation(name, tags=(RDFC,), did=None):
    return Implementation.from_dict({
        "name": name,
        "issuers": [{
            "id": did or f"did:example:{name}",
            "endpoint": f"https://{name.lower()}.example.com/credentials/issue",
            "tags": list(tags),
        }],
        "verifiers": [{
            "endpoint": f"https://{name.lower()}.example.com/credentials/verify",
            "tags": list(tags),
        }],
    })


def issue_url(name):
    return f"https://{name.lower()}.example.com/credentials/issue"


def verify_url(name):
    return f"https://{name.lower()}.example.com/credentials/verify"


@pytest.fixture
def services(ed25519_key, ed25519_did):
    """Mocked implementations with different defects, in registry order."""
    did, vm_id = ed25519_did
    issued_proof_values = set()

    def signer(cryptosuite=RDFC, verification_method=vm_id):
        def issue(request):
            credential = json.loads(request.content)["credential"]
            signed = sign_credential(
                credential, ed25519_key, verification_method, cryptosuite=cryptosuite
            )
            issued_proof_values.add(signed["proof"]["proofValue"])
            return Response(201, json=signed)
        return issue

    def verify(request):
        sent = json.loads(request.content)["verifiableCredential"]
        if sent["proof"]["proofValue"] in issued_proof_values:
            return Response(200, json={"checks": ["proof"]})
        return Response(400, json={"errors": ["invalid proof"]})

    with respx.mock(assert_all_called=False) as router:
        router.post(issue_url("Conforming")).mock(side_effect=signer())
        router.post(issue_url("WrongSuite")).mock(side_effect=signer(cryptosuite=JCS))
        router.post(issue_url("Broken")).mock(return_value=Response(500, json={}))
        router.post(issue_url("Unreachable")).mock(
            side_effect=httpx.ConnectError("connection refused")
        )
        router.post(issue_url("DidWeb")).mock(
            side_effect=signer(verification_method="did:web:gone.example.com#key-1")
        )
        router.get("https://gone.example.com/.well-known/did.json").mock(
            return_value=Response(404)
        )
        for name in ("Conforming", "WrongSuite", "DidWeb"):
            router.post(verify_url(name)).mock(side_effect=verify)

        registry = ImplementationRegistry([
            implementation("Conforming", did=did),
            implementation("WrongSuite", did=did),
            implementation("Unsupported", tags=(JCS,)),
            implementation("Broken"),
            implementation("Unreachable"),
            implementation("DidWeb"),
        ])
        yield registry


def columns_for(registry, tags=(RDFC,)):
    match, _ = registry.filter_by_tag(tags)
    return {impl.name: match.get(impl.name) for impl in registry}


def statuses(matrix, column_id):
    return {cell.row_id: cell.status for cell in matrix.column(column_id)}


class TestMatrixRunner:
    """Tests for MatrixRunner.run."""

    @pytest.mark.asyncio
    async def test_create_matrix(self, services):
        runner = MatrixRunner(required_tags=[RDFC])
        matrix = await runner.run(
            columns_for(services), create_rules(RDFC), title="eddsa-rdfc-2022 (create)"
        )

        assert matrix.columns == [
            "Conforming", "WrongSuite", "Unsupported", "Broken", "Unreachable", "DidWeb",
        ]
        assert list(matrix.rows) == [rule.id for rule in create_rules(RDFC)]
        assert len(matrix.cells) == 6 * len(matrix.rows)

        assert set(statuses(matrix, "Conforming").values()) == {CellStatus.PASS}

        wrong = statuses(matrix, "WrongSuite")
        assert wrong["cryptosuite-identity"] == CellStatus.FAIL
        assert wrong["signature-length"] == CellStatus.FAIL
        assert wrong["verification-method-type"] == CellStatus.PASS
        assert wrong["key-encoding"] == CellStatus.PASS

        assert set(statuses(matrix, "Unsupported").values()) == {CellStatus.SKIP}

    @pytest.mark.asyncio
    async def test_issuance_failures(self, services):
        matrix = await MatrixRunner(required_tags=[RDFC]).run(
            columns_for(services), create_rules(RDFC)
        )

        for cell in matrix.column("Broken"):
            assert cell.status == CellStatus.FAIL
            assert cell.kind == FailureKind.IMPLEMENTATION
            assert cell.reason.startswith("Issuance failed")

        for cell in matrix.column("Unreachable"):
            assert cell.status == CellStatus.FAIL
            assert cell.kind == FailureKind.ENVIRONMENT

    @pytest.mark.asyncio
    async def test_resolution_failure_only_fails_dependent_cells(self, services):
        """A did:web document that answers 404 is the implementation's defect."""
        matrix = await MatrixRunner(required_tags=[RDFC]).run(
            columns_for(services), create_rules(RDFC)
        )

        cells = {cell.row_id: cell for cell in matrix.column("DidWeb")}
        assert cells["cryptosuite-identity"].status == CellStatus.PASS
        assert cells["proof-verifies"].status == CellStatus.PASS
        for row_id in ("verification-method-type", "proof-purpose-binding",
                       "key-encoding", "signature-length"):
            assert cells[row_id].status == CellStatus.FAIL
            assert cells[row_id].kind == FailureKind.IMPLEMENTATION
            assert "resolution failed" in cells[row_id].reason

    @pytest.mark.asyncio
    async def test_concurrency_keeps_column_order(self, services):
        columns = columns_for(services)
        sequential = await MatrixRunner(required_tags=[RDFC]).run(
            columns, create_rules(RDFC)
        )
        parallel = await MatrixRunner(required_tags=[RDFC], concurrency=4).run(
            columns, create_rules(RDFC)
        )

        assert parallel.columns == sequential.columns
        for column_id in sequential.columns:
            assert statuses(parallel, column_id) == statuses(sequential, column_id)

    @pytest.mark.asyncio
    async def test_other_rule_sets(self, services):
        columns = {"Conforming": columns_for(services)["Conforming"]}
        runner = MatrixRunner(required_tags=[RDFC])

        data_model = await runner.run(columns, data_model_rules())
        assert set(statuses(data_model, "Conforming").values()) == {CellStatus.PASS}

        methods = await runner.run(columns, verification_method_rules())
        assert statuses(methods, "Conforming") == {
            "public-key-multibase-prefix": CellStatus.PASS,
            "public-key-other-encodings": CellStatus.PASS,
            "secret-key-multibase-prefix": CellStatus.SKIP,
            "secret-key-other-encodings": CellStatus.SKIP,
        }

    @pytest.mark.asyncio
    async def test_issuer_without_required_tag_is_skipped(self, services):
        runner = MatrixRunner(required_tags=[RDFC, "Ed25519Signature2020"])
        matrix = await runner.run(columns_for(services, [RDFC]), create_rules(RDFC))
        cells = matrix.column("Conforming")
        assert {cell.status for cell in cells} == {CellStatus.SKIP}
        assert "Ed25519Signature2020" in cells[0].reason

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            MatrixRunner(concurrency=0)

    def test_run_matrix_sync(self):
        columns = {"Unsupported": None}
        matrix = run_matrix(columns, create_rules(RDFC), title="sync")
        assert matrix.title == "sync"
        assert not matrix.failed
        assert matrix.summary() == {"Unsupported": {"pass": 0, "fail": 0, "skip": 7}}


class TestRunVerifiers:
    """Tests for MatrixRunner.run_verifiers."""

    @pytest.mark.asyncio
    async def test_verifier_matrix(self, services):
        match, _ = services.filter_by_tag([RDFC], role="verifiers")
        columns = {
            name: match.get(name) for name in ("Conforming", "WrongSuite", "Unsupported")
        }
        issuer = services.get("Conforming").issuers[0]

        matrix = await MatrixRunner(required_tags=[RDFC]).run_verifiers(
            issuer, columns, verifier_rules()
        )

        assert set(statuses(matrix, "Conforming").values()) == {CellStatus.PASS}
        assert set(statuses(matrix, "WrongSuite").values()) == {CellStatus.PASS}
        assert set(statuses(matrix, "Unsupported").values()) == {CellStatus.SKIP}

    @pytest.mark.asyncio
    async def test_reference_issuer_down(self, services):
        match, _ = services.filter_by_tag([RDFC], role="verifiers")
        issuer = services.get("Unreachable").issuers[0]

        matrix = await MatrixRunner().run_verifiers(
            issuer, {"Conforming": match["Conforming"]}, verifier_rules()
        )

        for cell in matrix.column("Conforming"):
            assert cell.status == CellStatus.FAIL
            assert cell.kind == FailureKind.ENVIRONMENT
            assert cell.reason.startswith("Reference issuance failed")


@pytest.fixture
def defective(ed25519_key, ed25519_did):
    """Implementations returning malformed credentials or documents."""
    did, vm_id = ed25519_did

    def issue_with(verification_method=vm_id, edit=None):
        def issue(request):
            credential = json.loads(request.content)["credential"]
            signed = sign_credential(credential, ed25519_key, verification_method)
            if edit is not None:
                edit(signed)
            return Response(201, json=signed)
        return issue

    def null_context(credential):
        credential["@context"] = None

    typeless_did = "did:web:typeless.example.com"
    typeless_document = {
        "id": typeless_did,
        "verificationMethod": [{
            "id": f"{typeless_did}#key-1",
            "controller": typeless_did,
            "publicKeyMultibase": vm_id.split("#")[1],
        }],
        "assertionMethod": [f"{typeless_did}#key-1"],
    }

    with respx.mock(assert_all_called=False) as router:
        router.post(issue_url("NullContext")).mock(
            side_effect=issue_with(edit=null_context)
        )
        router.post(issue_url("GarbageProof")).mock(
            return_value=Response(201, json={"@context": [], "proof": "garbage"})
        )
        router.post(issue_url("Offline")).mock(
            side_effect=issue_with("did:web:offline.example.com#key-1")
        )
        router.get("https://offline.example.com/.well-known/did.json").mock(
            side_effect=httpx.ConnectError("connection refused")
        )
        router.post(issue_url("Typeless")).mock(
            side_effect=issue_with(f"{typeless_did}#key-1")
        )
        router.get("https://typeless.example.com/.well-known/did.json").mock(
            return_value=Response(200, json=typeless_document)
        )
        for name in ("NullContext", "GarbageProof", "Offline", "Typeless"):
            router.post(verify_url(name)).mock(
                return_value=Response(400, json={"errors": ["invalid proof"]})
            )

        yield ImplementationRegistry([
            implementation("NullContext", did=did),
            implementation("GarbageProof"),
            implementation("Offline", did=did),
            implementation("Typeless", did=did),
        ])


class TestDefectiveImplementations:
    """Malformed output fails cells without stopping the run."""

    @pytest.mark.asyncio
    async def test_null_context(self, defective):
        matrix = await MatrixRunner(required_tags=[RDFC]).run(
            columns_for(defective), data_model_rules()
        )

        cell = matrix.cell("NullContext", "credential-shape")
        assert cell.status == CellStatus.FAIL
        assert cell.kind == FailureKind.IMPLEMENTATION
        assert "@context" in cell.reason
        assert matrix.cell("NullContext", "proof-type").status == CellStatus.PASS
        assert matrix.columns == ["NullContext", "GarbageProof", "Offline", "Typeless"]

    @pytest.mark.asyncio
    async def test_proof_is_not_an_object(self, defective):
        matrix = await MatrixRunner(required_tags=[RDFC]).run(
            columns_for(defective), create_rules(RDFC)
        )

        cells = {cell.row_id: cell for cell in matrix.column("GarbageProof")}
        assert len(cells) == len(create_rules(RDFC))
        assert cells["cryptosuite-identity"].status == CellStatus.FAIL
        assert cells["proof-verifies"].status == CellStatus.FAIL
        assert cells["key-encoding"].kind == FailureKind.IMPLEMENTATION
        assert cells["tampered-proof-rejected"].status == CellStatus.PASS

    @pytest.mark.asyncio
    async def test_proof_is_not_an_object_for_verifiers(self, defective):
        match, _ = defective.filter_by_tag([RDFC], role="verifiers")
        issuer = defective.get("GarbageProof").issuers[0]

        matrix = await MatrixRunner().run_verifiers(
            issuer, {"NullContext": match["NullContext"]}, verifier_rules()
        )

        assert statuses(matrix, "NullContext") == {
            "verifier-accepts-valid": CellStatus.FAIL,
            "verifier-rejects-tampered": CellStatus.PASS,
        }

    @pytest.mark.asyncio
    async def test_resolution_failure_kinds(self, defective):
        """Network failures are environmental, malformed documents are not."""
        matrix = await MatrixRunner(required_tags=[RDFC]).run(
            columns_for(defective), create_rules(RDFC)
        )

        offline = matrix.cell("Offline", "verification-method-type")
        assert offline.status == CellStatus.FAIL
        assert offline.kind == FailureKind.ENVIRONMENT

        typeless = matrix.cell("Typeless", "verification-method-type")
        assert typeless.status == CellStatus.FAIL
        assert typeless.kind == FailureKind.IMPLEMENTATION
        assert "has no type" in typeless.reason

    @pytest.mark.asyncio
    async def test_check_raising_unexpectedly(self, defective):
        def explode(bundle):
            raise RuntimeError("boom")

        columns = {"NullContext": columns_for(defective)["NullContext"]}
        matrix = await MatrixRunner(required_tags=[RDFC]).run(
            columns, [Rule("explodes", "Explodes", explode), *data_model_rules()]
        )

        cell = matrix.cell("NullContext", "explodes")
        assert cell.status == CellStatus.FAIL
        assert cell.kind == FailureKind.IMPLEMENTATION
        assert cell.reason == "Check raised RuntimeError: boom"
        assert matrix.cell("NullContext", "proof-type").status == CellStatus.PASS


class TestFixtureSelection:
    """The issued credential is compared with the fixture that was sent."""

    @pytest.mark.asyncio
    async def test_v2_credential_shape(self, services):
        columns = {"Conforming": columns_for(services)["Conforming"]}
        runner = MatrixRunner(required_tags=[RDFC], fixture="validVcV2")

        matrix = await runner.run(columns, data_model_rules())

        cell = matrix.cell("Conforming", "credential-shape")
        assert cell.status == CellStatus.PASS, cell.reason

    @pytest.mark.asyncio
    async def test_issuer_object_credential_shape(self, services):
        columns = {"Conforming": columns_for(services)["Conforming"]}
        runner = MatrixRunner(required_tags=[RDFC], fixture="issuerObjectVc")

        matrix = await runner.run(columns, data_model_rules())

        cell = matrix.cell("Conforming", "credential-shape")
        assert cell.status == CellStatus.PASS, cell.reason
