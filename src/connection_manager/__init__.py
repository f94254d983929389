"""
connection_manager — hub/DFSP connection configuration.

Manages TLS server certificates (hub-minted and DFSP-supplied), declared
network endpoints with their NEW → CONFIRMED → REVOKED lifecycle, and the
onboarding step that publishes each participant's egress IP whitelist to
the PKI engine.

Built on a Railway-Oriented Programming Result type for explicit,
composable error handling.
"""

__version__ = "0.1.0"
