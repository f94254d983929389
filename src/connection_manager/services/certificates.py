"""
Certificate Lifecycle Service — hub and per-DFSP server certificate records.

Stateless: each operation receives the environment's CertificateEngine and
the ParticipantDirectory. Records are always written whole; create and
update are the same replace operation.

DFSP records are assembled from caller-supplied PEM material:

  validate body → find participant → parse leaf / root / each intermediate
    → engine chain validation → set record (overwrites)

The hub record is assembled from engine-generated material:

  validate descriptor → find environment → mint leaf → fetch root
    → take FIRST intermediate of the returned chain → parse
    → override leaf serial with the engine-assigned one
    → re-validate leaf + intermediate + root → set record (overwrites)

Hub deletion revokes at the engine BEFORE deleting the record; a revoke
failure leaves the record in place.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import Any

import structlog

from connection_manager.domain.models import (
    CertificateInfo,
    CertificateRecord,
    CertificateScope,
    MintedCertificate,
    Participant,
)
from connection_manager.domain.ports import CertificateEngine, ParticipantDirectory
from connection_manager.domain.validation import (
    parse_certificate_submission,
    parse_hub_certificate_request,
    split_chain,
)
from connection_manager.railway import ErrorCode, Result
from connection_manager.services.chain import split_chain_info

log = structlog.get_logger()


def _parse_optional(engine: CertificateEngine, pem: str | None) -> Result[CertificateInfo | None]:
    if not pem:
        return Result.success(None)
    return engine.parse_certificate_info(pem)


def _assemble_record(
    engine: CertificateEngine,
    scope: CertificateScope,
    server_certificate: str,
    intermediate_chain: str | None,
    root_certificate: str | None,
    dfsp_id: str | None = None,
    serial_number: str | None = None,
) -> Result[CertificateRecord]:
    """
    Parse every piece and run the engine's chain validation.

    `serial_number`, when given, replaces the serial parsed from the leaf.
    """
    server_info = engine.parse_certificate_info(server_certificate).map(
        lambda info: replace(info, serial_number=serial_number) if serial_number else info
    )
    return server_info.flat_map(
        lambda leaf: _parse_optional(engine, root_certificate).flat_map(
            lambda root: split_chain_info(engine, intermediate_chain).flat_map(
                lambda chain: engine.validate_server_certificate(
                    server_certificate, intermediate_chain, root_certificate
                ).map(
                    lambda checked: CertificateRecord(
                        scope=scope,
                        dfsp_id=dfsp_id,
                        server_certificate=server_certificate,
                        server_certificate_info=leaf,
                        root_certificate=root_certificate,
                        root_certificate_info=root,
                        intermediate_chain=split_chain(intermediate_chain),
                        intermediate_chain_info=chain,
                        validations=checked.validations,
                        validation_state=checked.validation_state,
                    )
                )
            )
        )
    )


def _stamp_owner(record: CertificateRecord, participant: Participant) -> CertificateRecord:
    return replace(record, dfsp_id=participant.dfsp_id)


# ─────────────────────── DFSP server certificates ───────────────────────


def create_or_replace_dfsp_cert(
    engine: CertificateEngine,
    directory: ParticipantDirectory,
    env_id: int,
    dfsp_id: str,
    body: Mapping[str, Any] | None,
) -> Result[CertificateRecord]:
    """
    Store the DFSP's server certificate record, overwriting any previous one.

    Body: {serverCertificate, intermediateChain?, rootCertificate?} (PEM text).
    """
    return parse_certificate_submission(body).flat_map(
        lambda submission: directory.find_participant(env_id, dfsp_id).flat_map(
            lambda participant: _assemble_record(
                engine,
                CertificateScope.DFSP,
                submission.server_certificate,
                submission.intermediate_chain,
                submission.root_certificate,
                dfsp_id=participant.dfsp_id,
            )
            .flat_map(lambda record: engine.set_dfsp_certificate_record(participant.id, record))
            .peek(
                lambda record: log.info(
                    "dfsp_cert.stored",
                    env_id=env_id,
                    dfsp_id=dfsp_id,
                    validation_state=record.validation_state.value,
                    intermediates=len(record.intermediate_chain_info),
                )
            )
        )
    )


def get_dfsp_cert(
    engine: CertificateEngine,
    directory: ParticipantDirectory,
    env_id: int,
    dfsp_id: str,
) -> Result[CertificateRecord]:
    return directory.find_participant(env_id, dfsp_id).flat_map(
        lambda participant: engine.get_dfsp_certificate_record(participant.id).map(
            lambda record: _stamp_owner(record, participant)
        )
    )


def delete_dfsp_cert(
    engine: CertificateEngine,
    directory: ParticipantDirectory,
    env_id: int,
    dfsp_id: str,
) -> Result[None]:
    """Remove the record. DFSP certificates are not hub-trust-anchored, so no revocation."""
    return (
        directory.find_participant(env_id, dfsp_id)
        .flat_map(lambda participant: engine.delete_dfsp_certificate_record(participant.id))
        .peek(lambda _: log.info("dfsp_cert.deleted", env_id=env_id, dfsp_id=dfsp_id))
    )


def list_all_dfsp_certs(
    engine: CertificateEngine,
    directory: ParticipantDirectory,
    env_id: int,
) -> Result[list[CertificateRecord]]:
    """
    One record per participant of the environment, each carrying its dfsp_id.

    Fail-fast: the first participant lookup that fails aborts the whole list.
    """
    return directory.list_participants(env_id).flat_map(
        lambda participants: Result.all_of(
            engine.get_dfsp_certificate_record(p.id).map(
                lambda record, owner=p: _stamp_owner(record, owner)
            )
            for p in participants
        )
    )


# ─────────────────────── Hub server certificate ───────────────────────


def _assemble_hub_record(
    engine: CertificateEngine, minted: MintedCertificate
) -> Result[CertificateRecord]:
    # Only one intermediate level is kept from the engine's chain.
    intermediate = minted.ca_chain[0] if minted.ca_chain else None
    return engine.get_root_certificate().flat_map(
        lambda root: _assemble_record(
            engine,
            CertificateScope.HUB,
            minted.certificate,
            intermediate,
            root,
            serial_number=minted.serial_number,
        )
    )


def _log_orphan(minted: MintedCertificate) -> Any:
    return lambda failure: log.error(
        "hub_cert.persist_failed",
        serial_number=minted.serial_number,
        failure=str(failure),
    )


def create_or_replace_hub_cert(
    engine: CertificateEngine,
    directory: ParticipantDirectory,
    env_id: int,
    body: Mapping[str, Any] | None,
) -> Result[CertificateRecord]:
    """
    Mint a new hub server certificate and store it as the hub record.

    Body: {subject: {CN, O, OU, L, ST, C, emailAddress},
           extensions?: {subjectAltName: {dns: [...], ips: [...]}}}

    A failure after minting leaves a signed certificate at the engine with
    no local record; it is logged with its serial for reconciliation.
    """
    return parse_hub_certificate_request(body).flat_map(
        lambda request: directory.find_environment(env_id).flat_map(
            lambda _: engine.mint_hub_leaf(request)
            .peek(
                lambda minted: log.info(
                    "hub_cert.minted", env_id=env_id, serial_number=minted.serial_number
                )
            )
            .flat_map(
                lambda minted: _assemble_hub_record(engine, minted)
                .flat_map(engine.set_hub_certificate_record)
                .peek_failure(_log_orphan(minted))
            )
            .peek(
                lambda record: log.info(
                    "hub_cert.stored",
                    env_id=env_id,
                    validation_state=record.validation_state.value,
                )
            )
        )
    )


def get_hub_cert(
    engine: CertificateEngine,
    directory: ParticipantDirectory,
    env_id: int,
) -> Result[CertificateRecord | None]:
    """The hub record, or Success(None) when the environment has none."""
    return directory.find_environment(env_id).flat_map(
        lambda _: engine.get_hub_certificate_record()
    )


def _revoke_and_delete(engine: CertificateEngine, record: CertificateRecord) -> Result[bool]:
    serial = record.server_certificate_info.serial_number if record.server_certificate_info else None
    return (
        Result.from_optional(
            serial, "Hub certificate record has no serial number", ErrorCode.TECHNICAL_ERROR
        )
        .flat_map(engine.revoke_by_serial)
        .peek(lambda _: log.info("hub_cert.revoked", serial_number=serial))
        .flat_map(lambda _: engine.delete_hub_certificate_record())
        .replace(True)
    )


def delete_hub_cert(
    engine: CertificateEngine,
    directory: ParticipantDirectory,
    env_id: int,
) -> Result[bool]:
    """
    Revoke the hub certificate at the engine, then delete the record.

    Returns Success(True) when a record was revoked and deleted,
    Success(False) when there was nothing to delete.
    """
    return (
        directory.find_environment(env_id)
        .flat_map(lambda _: engine.get_hub_certificate_record())
        .flat_map(
            lambda record: Result.success(False)
            if record is None
            else _revoke_and_delete(engine, record)
        )
        .peek(lambda deleted: log.info("hub_cert.deleted", env_id=env_id, existed=deleted))
    )
