"""
Settlement-checking admission policy for Solana devnet.

The proof must reference a transaction signature (``proof.transaction`` or
``proof.signature``). The signature is looked up over JSON-RPC; the proof is
admitted when the transaction exists at ``confirmed`` commitment and did not
fail on-chain. Amount and recipient are not parsed out of the transaction.
"""
from typing import Any, Optional

import httpx
from loguru import logger
from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solders.signature import Signature

from x402sdk.tokens import DEVNET_TOKEN_PREFIX
from x402sdk.types import VerificationRequest

from .base import AdmissionPolicy, AdmissionResult

DEFAULT_RPC_URL = 'https://api.devnet.solana.com'

INVALID_PROOF = 'invalid_proof'
VERIFICATION_FAILED = 'verification_failed'


def extract_transaction_reference(proof: Any) -> Optional[str]:
    if not isinstance(proof, dict):
        return None
    reference = proof.get('transaction') or proof.get('signature')
    if not isinstance(reference, str):
        return None
    return reference.strip() or None


class SettlementVerifying(AdmissionPolicy):
    """Handler for proofs backed by a confirmed Solana transaction."""

    @property
    def mode(self) -> str:
        return 'devnet'

    @property
    def token_prefix(self) -> str:
        return DEVNET_TOKEN_PREFIX

    def _client(self) -> Client:
        return Client(
            self.config.get('rpc_url') or DEFAULT_RPC_URL,
            commitment=Confirmed,
            timeout=self.config.get('rpc_timeout_seconds', 10),
        )

    def admit(self, request: VerificationRequest) -> AdmissionResult:
        logger.info('[DEVNET] Verifying Solana transaction for {}, amount: {}',
                    request.payer, request.amount)

        reference = extract_transaction_reference(request.proof)
        if not reference:
            return AdmissionResult(
                admitted=False,
                error=INVALID_PROOF,
                detail='Missing transaction signature in proof',
            )

        try:
            signature = Signature.from_string(reference)
        except ValueError:
            return AdmissionResult(
                admitted=False,
                error=VERIFICATION_FAILED,
                detail=f'Malformed transaction signature: {reference}',
            )

        try:
            response = self._client().get_transaction(
                signature,
                commitment=Confirmed,
                max_supported_transaction_version=0,
            )
        except (SolanaRpcException, RPCException, httpx.HTTPError) as exc:
            logger.warning('[DEVNET] Transaction lookup failed for {}: {}', reference, exc)
            return AdmissionResult(
                admitted=False,
                error=VERIFICATION_FAILED,
                detail=f'Verification error: {exc}',
            )
        transaction = response.value
        if transaction is None:
            return AdmissionResult(
                admitted=False,
                error=VERIFICATION_FAILED,
                detail='Transaction not found',
            )

        meta = transaction.transaction.meta
        if meta is not None and meta.err is not None:
            return AdmissionResult(
                admitted=False,
                error=VERIFICATION_FAILED,
                detail='Transaction failed on-chain',
            )

        logger.info('[DEVNET] Transaction verified: {}', reference)
        return AdmissionResult(admitted=True, details={'transaction': reference})
