"""
Permissive admission policy used by the mock network.
"""
from loguru import logger

from x402sdk.tokens import MOCK_TOKEN_PREFIX
from x402sdk.types import VerificationRequest

from .base import AdmissionPolicy, AdmissionResult


class AlwaysAdmit(AdmissionPolicy):
    """Accepts every syntactically complete request. Performs no I/O."""

    @property
    def mode(self) -> str:
        return 'mock'

    @property
    def token_prefix(self) -> str:
        return MOCK_TOKEN_PREFIX

    def admit(self, request: VerificationRequest) -> AdmissionResult:
        logger.info('[MOCK] Verifying payment for {}, amount: {}',
                    request.payer, request.amount)
        return AdmissionResult(admitted=True)
