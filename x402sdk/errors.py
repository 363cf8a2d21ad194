"""
Exceptions raised by the x402 client orchestrator.

Every failure that aborts a handshake derives from :class:`X402Error` so
callers can handle the whole family with a single ``except`` clause.
"""

from typing import Any, Dict, Optional


class X402Error(Exception):
    """Base error for x402 handshake failures."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(X402Error):
    """Raised when the client is constructed with an unusable configuration."""


class MalformedResponse(X402Error):
    """Raised when a 402 response (or a verifier response) cannot be understood."""


class RequirementExpired(X402Error):
    """Raised when the server hands out payment terms that are already stale."""


class ProofConstructionFailed(X402Error):
    """Raised when a payment proof cannot be built or the settlement transfer fails."""


class VerificationFailed(X402Error):
    """Raised when the verifier answers with ``ok=false``."""

    def __init__(self, code: str, detail: Optional[str] = None) -> None:
        super().__init__(
            f'Payment verification failed: {code}',
            {'error': code, 'detail': detail},
        )
        self.code = code
        self.detail = detail


class TransportFailure(X402Error):
    """Raised on network-level failures of any handshake call."""


class HandshakeTimeout(TransportFailure):
    """Raised when a handshake call (or the whole handshake) times out."""
