"""
Chain parsing — metadata for every certificate of a concatenated PEM bundle.

Shared by the hub and DFSP certificate paths. Splitting is purely textual
(domain.validation.split_chain); parsing each block is the engine's job.

Contract:
  N certificates in → N metadata entries out, same order.
  Empty or missing bundle → empty list (not an error).
  Truncated blocks or stray text → VALIDATION_ERROR, nothing is parsed.
"""

from __future__ import annotations

from connection_manager.domain.models import CertificateInfo
from connection_manager.domain.ports import CertificateEngine
from connection_manager.domain.validation import validate_chain_bundle
from connection_manager.railway import Result


def split_chain_info(
    engine: CertificateEngine, bundle: str | None
) -> Result[list[CertificateInfo]]:
    """Parse every certificate of the bundle; the first unparseable one fails the whole chain."""
    return validate_chain_bundle(bundle).flat_map(
        lambda pems: Result.all_of(engine.parse_certificate_info(pem) for pem in pems)
    )
