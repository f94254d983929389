"""
Unit tests for the Vault engine adapter — PKI calls and KV storage.

Uses respx to mock httpx (never makes real HTTP requests).

Test categories:
  - Mint: request payload, serial normalization, CA chain
  - Root / revoke endpoints
  - KV records: 404 handling, record codec round trip through KV
  - Client bundle and whitelist writes
  - Transport errors become EXTERNAL_SERVICE_ERROR (never raise)
"""

from __future__ import annotations

import json

import httpx
import pytest
import respx
from support import Authority, InMemoryCertificateEngine, InMemoryParticipantDirectory

from connection_manager.adapters.vault_engine import VaultCertificateEngine, record_from_dict, record_to_dict
from connection_manager.domain.models import (
    CertificateSubject,
    HubCertificateRequest,
    ValidationState,
)
from connection_manager.railway import ErrorCode, ResultAssertions
from connection_manager.services.certificates import create_or_replace_dfsp_cert

VAULT = "https://vault.example.com"
KV = f"{VAULT}/v1/secret/1"


@pytest.fixture()
def vault() -> VaultCertificateEngine:
    return VaultCertificateEngine(base_url=VAULT, token="s.test-token", env_id=1, timeout=5)


class TestMintHubLeaf:
    @respx.mock
    def test_issues_with_role_ttl_and_sans(self, vault: VaultCertificateEngine, authority: Authority) -> None:
        route = respx.post(f"{VAULT}/v1/pki/issue/server-cert").mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": {
                        "certificate": authority.issue_leaf("hub.example.com"),
                        "serial_number": "0E:40:98:BD",
                        "ca_chain": [*authority.intermediate_pems, authority.root_pem],
                    }
                },
            )
        )
        request = HubCertificateRequest(
            subject=CertificateSubject(common_name="hub.example.com"),
            dns_names=["hub.example.com", "api.hub.example.com"],
            ip_addresses=["10.0.0.1"],
        )

        minted = ResultAssertions.assert_success(vault.mint_hub_leaf(request))

        assert minted.serial_number == "0e4098bd"
        assert minted.ca_chain[0] == authority.intermediate_pems[0]
        sent = json.loads(route.calls[0].request.content)
        assert sent == {
            "common_name": "hub.example.com",
            "ttl": "8760h",
            "alt_names": "hub.example.com,api.hub.example.com",
            "ip_sans": "10.0.0.1",
        }
        assert route.calls[0].request.headers["X-Vault-Token"] == "s.test-token"

    @respx.mock
    def test_falls_back_to_issuing_ca(self, vault: VaultCertificateEngine, authority: Authority) -> None:
        respx.post(f"{VAULT}/v1/pki/issue/server-cert").mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": {
                        "certificate": authority.issue_leaf(),
                        "serial_number": "01",
                        "issuing_ca": authority.intermediate_pems[0],
                    }
                },
            )
        )
        request = HubCertificateRequest(subject=CertificateSubject(common_name="hub"))
        assert vault.mint_hub_leaf(request).value().ca_chain == [authority.intermediate_pems[0]]

    @respx.mock
    def test_permission_denied(self, vault: VaultCertificateEngine) -> None:
        respx.post(f"{VAULT}/v1/pki/issue/server-cert").mock(
            return_value=httpx.Response(403, json={"errors": ["permission denied"]})
        )
        request = HubCertificateRequest(subject=CertificateSubject(common_name="hub"))
        ResultAssertions.assert_failure(vault.mint_hub_leaf(request), ErrorCode.EXTERNAL_SERVICE_ERROR)


class TestRootAndRevoke:
    @respx.mock
    def test_root_is_plain_pem(self, vault: VaultCertificateEngine, authority: Authority) -> None:
        respx.get(f"{VAULT}/v1/pki-root/ca/pem").mock(
            return_value=httpx.Response(200, text=authority.root_pem)
        )
        assert vault.get_root_certificate().value() == authority.root_pem

    @respx.mock
    def test_revoke_sends_colon_separated_serial(self, vault: VaultCertificateEngine) -> None:
        route = respx.post(f"{VAULT}/v1/pki/revoke").mock(
            return_value=httpx.Response(200, json={"data": {"revocation_time": 1}})
        )

        ResultAssertions.assert_success(vault.revoke_by_serial("0e4098bd"))

        assert json.loads(route.calls[0].request.content) == {"serial_number": "0e:40:98:bd"}

    @respx.mock
    def test_network_error_never_raises(self, vault: VaultCertificateEngine, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("time.sleep", lambda _: None)
        route = respx.post(f"{VAULT}/v1/pki/revoke").mock(side_effect=httpx.ConnectError("refused"))

        result = vault.revoke_by_serial("01")

        ResultAssertions.assert_failure(result, ErrorCode.EXTERNAL_SERVICE_ERROR)
        assert route.call_count == 3


class TestRecords:
    @respx.mock
    def test_missing_hub_record_is_none(self, vault: VaultCertificateEngine) -> None:
        respx.get(f"{KV}/hub-server-cert").mock(return_value=httpx.Response(404, json={"errors": []}))
        assert vault.get_hub_certificate_record().value() is None

    @respx.mock
    def test_missing_dfsp_record_is_not_found(self, vault: VaultCertificateEngine) -> None:
        respx.get(f"{KV}/dfsp-server-certs/100").mock(return_value=httpx.Response(404))
        ResultAssertions.assert_failure(vault.get_dfsp_certificate_record(100), ErrorCode.NOT_FOUND)

    @respx.mock
    def test_dfsp_record_survives_kv_round_trip(
        self,
        vault: VaultCertificateEngine,
        authority: Authority,
        directory: InMemoryParticipantDirectory,
    ) -> None:
        """
        GIVEN a DFSP record assembled from a generated chain
        WHEN it is written to KV and read back
        THEN the decoded record equals the original.
        """
        participant = directory.add_participant("dfsp-a")
        stored: dict[str, dict] = {}

        def write(request: httpx.Request) -> httpx.Response:
            stored["doc"] = json.loads(request.content)
            return httpx.Response(204)

        respx.post(f"{KV}/dfsp-server-certs/{participant.id}").mock(side_effect=write)
        respx.get(f"{KV}/dfsp-server-certs/{participant.id}").mock(
            side_effect=lambda request: httpx.Response(200, json={"data": stored["doc"]})
        )
        body = {
            "serverCertificate": authority.issue_leaf(),
            "intermediateChain": authority.intermediate_bundle,
            "rootCertificate": authority.root_pem,
        }

        record = create_or_replace_dfsp_cert(vault, directory, 1, "dfsp-a", body).value()
        fetched = ResultAssertions.assert_success(vault.get_dfsp_certificate_record(participant.id))

        assert fetched == record
        assert fetched.validation_state is ValidationState.PASSED
        assert stored["doc"]["serverCertificateInfo"]["serialNumber"] == record.server_certificate_info.serial_number  # type: ignore[union-attr]

    def test_codec_keeps_validations(
        self, authority: Authority, engine: InMemoryCertificateEngine
    ) -> None:
        record = create_or_replace_dfsp_cert(
            engine,
            _directory_with("dfsp-a"),
            1,
            "dfsp-a",
            {"serverCertificate": authority.issue_leaf()},
        ).value()

        assert record_from_dict(record_to_dict(record)) == record

    @respx.mock
    def test_delete_hub_record(self, vault: VaultCertificateEngine) -> None:
        route = respx.delete(f"{KV}/hub-server-cert").mock(return_value=httpx.Response(204))
        ResultAssertions.assert_success(vault.delete_hub_certificate_record())
        assert route.called


def _directory_with(dfsp_id: str) -> InMemoryParticipantDirectory:
    directory = InMemoryParticipantDirectory()
    directory.add_participant(dfsp_id)
    return directory


class TestBundles:
    @respx.mock
    def test_client_bundle_is_assembled_from_ca_and_client_cert(
        self, vault: VaultCertificateEngine, authority: Authority
    ) -> None:
        leaf = authority.issue_leaf("client.dfsp-a")
        respx.get(f"{KV}/dfsp-ca/100").mock(
            return_value=httpx.Response(
                200,
                json={"data": {"rootCertificate": authority.root_pem, "intermediateChain": authority.intermediate_bundle}},
            )
        )
        respx.get(f"{KV}/dfsp-client-cert/100").mock(
            return_value=httpx.Response(200, json={"data": {"certificate": leaf}})
        )
        write = respx.post(f"{KV}/client-cert-bundle/dfsp-a").mock(return_value=httpx.Response(204))

        ResultAssertions.assert_success(vault.refresh_client_cert_bundle(100, "dfsp-a"))

        bundle = json.loads(write.calls[0].request.content)
        assert bundle["host"] == "dfsp-a"
        assert bundle["ca_bundle"].count("BEGIN CERTIFICATE") == 2
        assert bundle["client_cert_chain"].startswith(leaf.strip())

    @respx.mock
    def test_client_bundle_without_ca_is_not_found(self, vault: VaultCertificateEngine) -> None:
        respx.get(f"{KV}/dfsp-ca/100").mock(return_value=httpx.Response(404))
        write = respx.post(f"{KV}/client-cert-bundle/dfsp-a")

        ResultAssertions.assert_failure(vault.refresh_client_cert_bundle(100, "dfsp-a"), ErrorCode.NOT_FOUND)
        assert not write.called

    @respx.mock
    def test_whitelist_written_as_is(self, vault: VaultCertificateEngine) -> None:
        route = respx.post(f"{KV}/internal-ip-whitelist").mock(return_value=httpx.Response(204))

        vault.materialize_internal_ip_allow_list({"A": "1.1.1.1,2.2.2.2", "B": "3.3.3.3"})

        assert json.loads(route.calls[0].request.content) == {"A": "1.1.1.1,2.2.2.2", "B": "3.3.3.3"}
