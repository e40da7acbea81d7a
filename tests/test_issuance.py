"""Tests for issuing fixtures and submitting credentials to verifiers."""

import json
import logging

import httpx
import pytest
import respx
from httpx import Response

from di_conformance.fixtures import generate_test_data
from di_conformance.issuance import (
    IssuanceError,
    create_initial_vc,
    get_proofs,
    prepare_credential,
    verify_credential,
)

from conftest import ISSUER_URL, VERIFIER_URL, sign_credential


def signing_issuer(private_key, vm_id):
    """respx side effect that signs the posted credential."""
    def issue(request):
        body = json.loads(request.content)
        return Response(201, json=sign_credential(body["credential"], private_key, vm_id))
    return issue


class TestPrepareCredential:
    """Tests for per-issuance credential identity."""

    def test_fresh_ids(self, issuer):
        """Two clones issued in turn never share an id."""
        data = generate_test_data()
        first = prepare_credential(issuer, data.clone("validVc"))
        second = prepare_credential(issuer, data.clone("validVc"))

        assert first["id"].startswith("urn:uuid:")
        assert first["id"] != second["id"]
        assert first["issuer"] == second["issuer"] == issuer.settings.id

    def test_fixture_not_modified(self, issuer):
        vc = generate_test_data().clone("validVc")
        prepare_credential(issuer, vc)
        assert "id" not in vc

    def test_issuer_object(self, issuer):
        """An issuer object keeps its other properties."""
        vc = generate_test_data().clone("issuerObjectVc")
        credential = prepare_credential(issuer, vc)
        assert credential["issuer"]["id"] == issuer.settings.id
        assert credential["issuer"]["name"] == "Conformance Test Issuer"


class TestCreateInitialVc:
    """Tests for create_initial_vc."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_issue(self, issuer, ed25519_key, ed25519_did):
        _, vm_id = ed25519_did
        route = respx.post(ISSUER_URL).mock(side_effect=signing_issuer(ed25519_key, vm_id))
        issuer.settings.options = {"mandatoryPointers": ["/issuer"]}

        issued = await create_initial_vc(issuer, generate_test_data().clone("validVc"))

        body = json.loads(route.calls.last.request.content)
        assert body["options"] == {"mandatoryPointers": ["/issuer"]}
        assert issued["id"] == body["credential"]["id"]
        assert issued["proof"]["verificationMethod"] == vm_id

    @pytest.mark.asyncio
    @respx.mock
    async def test_issue_twice(self, issuer, ed25519_key, ed25519_did):
        """Issuing two clones of one fixture gives two ids."""
        _, vm_id = ed25519_did
        respx.post(ISSUER_URL).mock(side_effect=signing_issuer(ed25519_key, vm_id))
        data = generate_test_data()

        first = await create_initial_vc(issuer, data.clone("validVc"))
        second = await create_initial_vc(issuer, data.clone("validVc"))

        assert first["id"] != second["id"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_unwraps_verifiable_credential(self, issuer):
        respx.post(ISSUER_URL).mock(
            return_value=Response(201, json={"verifiableCredential": {"id": "urn:x"}})
        )
        issued = await create_initial_vc(issuer, {"type": ["VerifiableCredential"]})
        assert issued == {"id": "urn:x"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_error_is_logged(self, issuer, caplog):
        """The request body and the error response are logged at WARNING."""
        respx.post(ISSUER_URL).mock(
            return_value=Response(500, json={"error": "unsupported suite"})
        )

        with caplog.at_level(logging.WARNING, logger="di_conformance.issuance"):
            with pytest.raises(IssuanceError) as exc_info:
                await create_initial_vc(issuer, generate_test_data().clone("validVc"))

        assert exc_info.value.status == 500
        assert exc_info.value.transport is False
        assert "credential" in exc_info.value.body
        assert f"Issuance failed for {ISSUER_URL}" in caplog.text
        assert '"body"' in caplog.text
        assert '"credential"' in caplog.text
        assert "unsupported suite" in caplog.text

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error(self, issuer):
        respx.post(ISSUER_URL).mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(IssuanceError) as exc_info:
            await create_initial_vc(issuer, {})
        assert exc_info.value.transport is True

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_credential(self, issuer):
        respx.post(ISSUER_URL).mock(return_value=Response(200, json=["nope"]))
        with pytest.raises(IssuanceError, match="did not return a credential"):
            await create_initial_vc(issuer, {})


class TestGetProofs:
    """Tests for proof normalisation."""

    def test_single(self):
        assert get_proofs({"proof": {"type": "A"}}) == [{"type": "A"}]

    def test_list(self):
        assert get_proofs({"proof": [{"type": "A"}, None, {"type": "B"}]}) == [
            {"type": "A"}, {"type": "B"},
        ]

    def test_missing(self):
        assert get_proofs({}) == []
        assert get_proofs(None) == []


class TestVerifyCredential:
    """Tests for the verifier request body."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_body(self, verifier):
        route = respx.post(VERIFIER_URL).mock(return_value=Response(200, json={}))

        response = await verify_credential(verifier, {"id": "urn:x"})

        assert response.result.status == 200
        assert json.loads(route.calls.last.request.content) == {
            "verifiableCredential": {"id": "urn:x"},
            "options": {"checks": ["proof"]},
        }

    @pytest.mark.asyncio
    @respx.mock
    async def test_checks_pass_through(self, verifier):
        route = respx.post(VERIFIER_URL).mock(return_value=Response(200, json={}))
        await verify_credential(verifier, {}, checks=["proof", "status"])
        body = json.loads(route.calls.last.request.content)
        assert body["options"]["checks"] == ["proof", "status"]
