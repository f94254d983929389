"""
Shared test fixtures for the connection-manager test suite.

Certificate material is generated per session (see support.Authority);
the in-memory ports are fresh for every test.
"""

from __future__ import annotations

import pytest
from support import (
    Authority,
    InMemoryCertificateEngine,
    InMemoryEndpointRepository,
    InMemoryParticipantDirectory,
)


@pytest.fixture(scope="session")
def authority() -> Authority:
    """Root → one intermediate, shared by the whole session."""
    return Authority.create("Hub")


@pytest.fixture(scope="session")
def other_authority() -> Authority:
    """An unrelated hierarchy, for mismatched-chain cases."""
    return Authority.create("Other")


@pytest.fixture()
def repository() -> InMemoryEndpointRepository:
    return InMemoryEndpointRepository()


@pytest.fixture()
def directory() -> InMemoryParticipantDirectory:
    return InMemoryParticipantDirectory()


@pytest.fixture()
def engine(authority: Authority) -> InMemoryCertificateEngine:
    return InMemoryCertificateEngine(authority=authority)
