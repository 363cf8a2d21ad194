"""
Client-side toolkit for the x402 payment handshake.

Re-exports the orchestrator, the shared wire model and the error taxonomy so
integrators can ``from x402sdk import ...`` without navigating the package.
"""

from .client import MODE_DEVNET, MODE_MOCK, X402Client
from .errors import (
    ConfigurationError,
    HandshakeTimeout,
    MalformedResponse,
    ProofConstructionFailed,
    RequirementExpired,
    TransportFailure,
    VerificationFailed,
    X402Error,
)
from .solana_utils import create_solana_payment, create_test_keypair, load_keypair, request_airdrop
from .tokens import (
    DEFAULT_ACCEPTED_PREFIXES,
    DEVNET_TOKEN_PREFIX,
    MOCK_TOKEN_PREFIX,
    has_accepted_prefix,
    mint_token,
)
from .types import (
    PAYMENT_HEADER,
    PaymentProof,
    PaymentRequirement,
    VerificationRequest,
    VerificationResponse,
)

__all__ = [
    'ConfigurationError',
    'DEFAULT_ACCEPTED_PREFIXES',
    'DEVNET_TOKEN_PREFIX',
    'HandshakeTimeout',
    'MODE_DEVNET',
    'MODE_MOCK',
    'MOCK_TOKEN_PREFIX',
    'MalformedResponse',
    'PAYMENT_HEADER',
    'PaymentProof',
    'PaymentRequirement',
    'ProofConstructionFailed',
    'RequirementExpired',
    'TransportFailure',
    'VerificationFailed',
    'VerificationRequest',
    'VerificationResponse',
    'X402Client',
    'X402Error',
    'create_solana_payment',
    'create_test_keypair',
    'has_accepted_prefix',
    'load_keypair',
    'mint_token',
    'request_airdrop',
]
