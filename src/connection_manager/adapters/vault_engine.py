"""
Vault engine adapter — PKI issuance, revocation and KV storage via httpx.

Adapter layer — implements the CertificateEngine port for ONE environment
against HashiCorp Vault's HTTP API. Parsing and chain validation are
delegated to the local X509CertificateInspector.

Vault paths used (mounts are configurable):

  POST   /v1/{pki}/issue/{role}      mint a hub server leaf
  GET    /v1/{root_pki}/ca/pem       root certificate (plain PEM body)
  POST   /v1/{pki}/revoke            revoke by serial number
  GET/POST/DELETE /v1/{kv}/{env}/... KV v1 records:
      hub-server-cert                     hub certificate record
      dfsp-server-certs/{participant_id}  DFSP certificate record
      dfsp-ca/{participant_id}            DFSP CA (rootCertificate, intermediateChain)
      dfsp-client-cert/{participant_id}   hub-signed DFSP client certificate
      client-cert-bundle/{dfsp_id}        assembled client bundle
      internal-ip-whitelist               egress IP whitelist bundle

A KV 404 is "no record": None for the hub record, NOT_FOUND elsewhere.
Retry/backoff via tenacity on transient errors (network, timeout).
All HTTP errors are captured into Result failures.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from connection_manager.adapters.x509_inspector import X509CertificateInspector
from connection_manager.domain.models import (
    CertificateInfo,
    CertificateRecord,
    CertificateScope,
    CertificateValidation,
    ChainValidation,
    HubCertificateRequest,
    MintedCertificate,
    ValidationResult,
    ValidationState,
    WhitelistBundle,
)
from connection_manager.railway import ErrorCode, Result, not_found

log = structlog.get_logger()

_transient = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=0.1, max=30),
    retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
    reraise=True,
)


# ─────────────────────── Record codec ───────────────────────


def _info_to_dict(info: CertificateInfo | None) -> dict[str, Any] | None:
    if info is None:
        return None
    return {
        "serialNumber": info.serial_number,
        "notBefore": info.not_before.isoformat(),
        "notAfter": info.not_after.isoformat(),
        "subject": info.subject,
        "issuer": info.issuer,
        "subjectAlternativeNames": list(info.subject_alternative_names),
        "signatureAlgorithm": info.signature_algorithm,
    }


def _info_from_dict(data: dict[str, Any] | None) -> CertificateInfo | None:
    if data is None:
        return None
    return CertificateInfo(
        serial_number=data["serialNumber"],
        not_before=datetime.fromisoformat(data["notBefore"]),
        not_after=datetime.fromisoformat(data["notAfter"]),
        subject=data["subject"],
        issuer=data["issuer"],
        subject_alternative_names=list(data.get("subjectAlternativeNames") or []),
        signature_algorithm=data.get("signatureAlgorithm"),
    )


def record_to_dict(record: CertificateRecord) -> dict[str, Any]:
    """Serialize a record into the camelCase document stored in KV."""
    return {
        "scope": record.scope.value,
        "dfspId": record.dfsp_id,
        "serverCertificate": record.server_certificate,
        "serverCertificateInfo": _info_to_dict(record.server_certificate_info),
        "rootCertificate": record.root_certificate,
        "rootCertificateInfo": _info_to_dict(record.root_certificate_info),
        "intermediateChain": list(record.intermediate_chain),
        "intermediateChainInfo": [_info_to_dict(i) for i in record.intermediate_chain_info],
        "validations": [
            {"name": v.name, "result": v.result.value, "message": v.message}
            for v in record.validations
        ],
        "validationState": record.validation_state.value,
    }


def record_from_dict(data: dict[str, Any]) -> CertificateRecord:
    return CertificateRecord(
        scope=CertificateScope(data["scope"]),
        dfsp_id=data.get("dfspId"),
        server_certificate=data["serverCertificate"],
        server_certificate_info=_info_from_dict(data.get("serverCertificateInfo")),
        root_certificate=data.get("rootCertificate"),
        root_certificate_info=_info_from_dict(data.get("rootCertificateInfo")),
        intermediate_chain=list(data.get("intermediateChain") or []),
        intermediate_chain_info=[
            info for info in map(_info_from_dict, data.get("intermediateChainInfo") or []) if info
        ],
        validations=[
            CertificateValidation(
                name=v["name"], result=ValidationResult(v["result"]), message=v.get("message", "")
            )
            for v in data.get("validations") or []
        ],
        validation_state=ValidationState(data.get("validationState", ValidationState.PASSED)),
    )


# ─────────────────────── Engine ───────────────────────


class VaultCertificateEngine:
    """
    CertificateEngine backed by Vault PKI + KV v1, scoped to one environment.

    Implements the CertificateEngine port.
    Uses tenacity retry on transient network errors only.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        env_id: int,
        pki_mount: str = "pki",
        root_pki_mount: str = "pki-root",
        kv_mount: str = "secret",
        issue_role: str = "server-cert",
        issue_ttl: str = "8760h",
        timeout: int = 60,
        verify_tls: bool = True,
        inspector: X509CertificateInspector | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._env_id = env_id
        self._pki_mount = pki_mount
        self._root_pki_mount = root_pki_mount
        self._kv_mount = kv_mount
        self._issue_role = issue_role
        self._issue_ttl = issue_ttl
        self._timeout = timeout
        self._verify_tls = verify_tls
        self._inspector = inspector or X509CertificateInspector()

    # ── HTTP plumbing ──

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self._base_url,
            headers={"X-Vault-Token": self._token},
            timeout=self._timeout,
            verify=self._verify_tls,
        )

    def _kv_path(self, key: str) -> str:
        return f"/v1/{self._kv_mount}/{self._env_id}/{key}"

    @_transient
    def _kv_read(self, key: str) -> dict[str, Any] | None:
        """KV GET; None on 404."""
        with self._client() as client:
            response = client.get(self._kv_path(key))
            if response.status_code == httpx.codes.NOT_FOUND:
                return None
            response.raise_for_status()
            data: dict[str, Any] = response.json()["data"]
            return data

    @_transient
    def _kv_write(self, key: str, data: dict[str, Any]) -> None:
        with self._client() as client:
            client.post(self._kv_path(key), json=data).raise_for_status()
            log.debug("vault.kv_written", env_id=self._env_id, key=key)

    @_transient
    def _kv_delete(self, key: str) -> None:
        with self._client() as client:
            client.delete(self._kv_path(key)).raise_for_status()
            log.debug("vault.kv_deleted", env_id=self._env_id, key=key)

    def _read(self, key: str, message: str) -> Result[dict[str, Any] | None]:
        return Result.from_computation(
            lambda: self._kv_read(key), ErrorCode.EXTERNAL_SERVICE_ERROR, message
        )

    def _read_required(self, key: str, resource: str, identifier: Any) -> Result[dict[str, Any]]:
        return self._read(key, f"Failed to read {resource}").flat_map(
            lambda data: not_found(resource, identifier) if data is None else Result.success(data)
        )

    def _write(self, key: str, data: dict[str, Any], message: str) -> Result[None]:
        return Result.from_computation(
            lambda: self._kv_write(key, data), ErrorCode.EXTERNAL_SERVICE_ERROR, message
        )

    def _delete(self, key: str, message: str) -> Result[None]:
        return Result.from_computation(
            lambda: self._kv_delete(key), ErrorCode.EXTERNAL_SERVICE_ERROR, message
        )

    # ── Parsing & validation (local) ──

    def parse_certificate_info(self, pem: str) -> Result[CertificateInfo]:
        return self._inspector.parse_certificate_info(pem)

    def validate_server_certificate(
        self,
        server_certificate: str,
        intermediate_chain: str | None = None,
        root_certificate: str | None = None,
    ) -> Result[ChainValidation]:
        return self._inspector.validate_server_certificate(
            server_certificate, intermediate_chain, root_certificate
        )

    # ── PKI ──

    def mint_hub_leaf(self, request: HubCertificateRequest) -> Result[MintedCertificate]:
        """
        Sign a new hub server leaf with the configured role and TTL.

        Returns the leaf PEM, the Vault-assigned serial (colon-free, lowercase)
        and the issuing CA chain, intermediate first.
        """
        return Result.from_computation(
            lambda: self._do_issue(request),
            ErrorCode.EXTERNAL_SERVICE_ERROR,
            "Hub certificate issuance failed",
        )

    @_transient
    def _do_issue(self, request: HubCertificateRequest) -> MintedCertificate:
        payload: dict[str, Any] = {
            "common_name": request.subject.common_name,
            "ttl": self._issue_ttl,
        }
        if request.dns_names:
            payload["alt_names"] = ",".join(request.dns_names)
        if request.ip_addresses:
            payload["ip_sans"] = ",".join(request.ip_addresses)
        with self._client() as client:
            response = client.post(f"/v1/{self._pki_mount}/issue/{self._issue_role}", json=payload)
            response.raise_for_status()
            data = response.json()["data"]
            serial = data["serial_number"].replace(":", "").replace("-", "").lower()
            ca_chain = list(data.get("ca_chain") or [])
            if not ca_chain and data.get("issuing_ca"):
                ca_chain = [data["issuing_ca"]]
            log.info("vault.issued", env_id=self._env_id, serial_number=serial)
            return MintedCertificate(
                certificate=data["certificate"], serial_number=serial, ca_chain=ca_chain
            )

    def get_root_certificate(self) -> Result[str]:
        return Result.from_computation(
            lambda: self._do_get_root(),
            ErrorCode.EXTERNAL_SERVICE_ERROR,
            "Root certificate retrieval failed",
        )

    @_transient
    def _do_get_root(self) -> str:
        with self._client() as client:
            response = client.get(f"/v1/{self._root_pki_mount}/ca/pem")
            response.raise_for_status()
            return response.text

    def revoke_by_serial(self, serial_number: str) -> Result[None]:
        return Result.from_computation(
            lambda: self._do_revoke(serial_number),
            ErrorCode.EXTERNAL_SERVICE_ERROR,
            "Certificate revocation failed",
        )

    @_transient
    def _do_revoke(self, serial_number: str) -> None:
        # Vault expects colon-separated hex pairs.
        colon_serial = ":".join(
            serial_number[i : i + 2] for i in range(0, len(serial_number), 2)
        )
        with self._client() as client:
            response = client.post(
                f"/v1/{self._pki_mount}/revoke", json={"serial_number": colon_serial}
            )
            response.raise_for_status()
            log.info("vault.revoked", env_id=self._env_id, serial_number=serial_number)

    # ── Hub certificate record ──

    def get_hub_certificate_record(self) -> Result[CertificateRecord | None]:
        return self._read("hub-server-cert", "Failed to read hub certificate record").flat_map(
            lambda data: Result.from_computation(
                lambda: None if data is None else record_from_dict(data),
                ErrorCode.TECHNICAL_ERROR,
                "Corrupt hub certificate record",
            )
        )

    def set_hub_certificate_record(self, record: CertificateRecord) -> Result[CertificateRecord]:
        return self._write(
            "hub-server-cert", record_to_dict(record), "Failed to store hub certificate record"
        ).replace(record)

    def delete_hub_certificate_record(self) -> Result[None]:
        return self._delete("hub-server-cert", "Failed to delete hub certificate record")

    # ── DFSP certificate records ──

    def get_dfsp_certificate_record(self, participant_id: int) -> Result[CertificateRecord]:
        return self._read_required(
            f"dfsp-server-certs/{participant_id}", "DFSP server certificate", participant_id
        ).flat_map(
            lambda data: Result.from_computation(
                lambda: record_from_dict(data),
                ErrorCode.TECHNICAL_ERROR,
                "Corrupt DFSP certificate record",
            )
        )

    def set_dfsp_certificate_record(
        self, participant_id: int, record: CertificateRecord
    ) -> Result[CertificateRecord]:
        return self._write(
            f"dfsp-server-certs/{participant_id}",
            record_to_dict(record),
            "Failed to store DFSP certificate record",
        ).replace(record)

    def delete_dfsp_certificate_record(self, participant_id: int) -> Result[None]:
        return self._delete(
            f"dfsp-server-certs/{participant_id}", "Failed to delete DFSP certificate record"
        )

    # ── Onboarding bundles ──

    def refresh_client_cert_bundle(self, participant_id: int, dfsp_id: str) -> Result[None]:
        """
        Assemble the participant's client bundle from its CA and client certificate.

        Bundle: {ca_bundle: intermediates + root, client_cert_chain: cert + intermediates,
                 host: dfsp_id}
        """
        return self._read_required(
            f"dfsp-ca/{participant_id}", "DFSP CA", participant_id
        ).flat_map(
            lambda ca: self._read_required(
                f"dfsp-client-cert/{participant_id}", "DFSP client certificate", participant_id
            ).flat_map(
                lambda client_cert: self._write(
                    f"client-cert-bundle/{dfsp_id}",
                    _client_bundle(ca, client_cert, dfsp_id),
                    "Failed to store client certificate bundle",
                )
            )
        )

    def materialize_internal_ip_allow_list(self, bundle: WhitelistBundle) -> Result[None]:
        return self._write(
            "internal-ip-whitelist", dict(bundle), "Failed to store internal IP whitelist"
        ).peek(
            lambda _: log.info(
                "vault.whitelist_written", env_id=self._env_id, participants=len(bundle)
            )
        )


def _join_pems(*parts: str | None) -> str:
    return "\n".join(part.strip() for part in parts if part and part.strip()) + "\n"


def _client_bundle(
    ca: dict[str, Any], client_cert: dict[str, Any], dfsp_id: str
) -> dict[str, Any]:
    intermediates = ca.get("intermediateChain")
    return {
        "ca_bundle": _join_pems(intermediates, ca.get("rootCertificate")),
        "client_cert_chain": _join_pems(client_cert.get("certificate"), intermediates),
        "host": dfsp_id,
    }
