"""
Admission policy interface.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from x402sdk.types import VerificationRequest


@dataclass
class AdmissionResult:
    """Result of admitting a payment proof."""
    admitted: bool
    error: Optional[str] = None
    detail: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class AdmissionPolicy(ABC):
    """
    Abstract base class for proof admission.
    Each verifier mode (mock, devnet, etc.) implements this interface.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the policy.

        Args:
            config: Mode-specific configuration (RPC URL, timeouts, etc.)
        """
        self.config = config

    @property
    @abstractmethod
    def mode(self) -> str:
        """Return the mode name (e.g., 'mock', 'devnet')."""
        pass

    @property
    @abstractmethod
    def token_prefix(self) -> str:
        """Return the prefix for tokens minted under this policy."""
        pass

    @abstractmethod
    def admit(self, request: VerificationRequest) -> AdmissionResult:
        """
        Decide whether the proof in ``request`` is accepted.

        Args:
            request: Validated verification request

        Returns:
            AdmissionResult with the decision and, on rejection, an error code
        """
        pass
