"""
Verification of payment proofs and minting of verification tokens.
"""
from typing import Any, Optional

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from x402sdk.tokens import mint_token
from x402sdk.types import VerificationRequest, VerificationResponse, utc_now

from facilitator.admission import AdmissionPolicy, UnknownModeError, policy_for_mode
from facilitator.config import FacilitatorConfig
from facilitator.store import DuplicateTokenError, VerificationRecord, VerificationStore

INVALID_REQUEST = 'invalid_request'
INVALID_PROOF = 'invalid_proof'
VERIFICATION_FAILED = 'verification_failed'
VERIFICATION_ERROR = 'verification_error'
UNSUPPORTED_MODE = 'unsupported_mode'
REQUIREMENT_EXPIRED = 'requirement_expired'

REQUIRED_FIELDS = ('proof', 'payer', 'amount')
MISSING_FIELDS_DETAIL = 'Missing required fields: proof, payer, amount'


def _is_missing(value: Any) -> bool:
    # Objects and arrays count as present even when empty.
    if isinstance(value, (dict, list)):
        return False
    return value is None or value is False or value == 0 or value == ''


class Verifier:
    """
    Admits payment proofs through one admission policy and mints tokens.

    The policy is fixed for the lifetime of the verifier. A verifier built
    without a policy (unknown mode) rejects every request with
    ``unsupported_mode``.
    """

    def __init__(
        self,
        policy: Optional[AdmissionPolicy],
        store: VerificationStore,
        *,
        mode: Optional[str] = None,
        enforce_requirement_expiry: bool = False,
    ):
        self.policy = policy
        self.store = store
        self.mode = mode or (policy.mode if policy else 'unknown')
        self.enforce_requirement_expiry = enforce_requirement_expiry

    @classmethod
    def from_config(cls, config: FacilitatorConfig, store: Optional[VerificationStore] = None) -> 'Verifier':
        try:
            policy = policy_for_mode(config.mode, config.policy_config())
        except UnknownModeError as exc:
            logger.error('facilitator mode not supported: {}', exc)
            policy = None
        return cls(
            policy,
            store if store is not None else VerificationStore(),
            mode=config.mode,
            enforce_requirement_expiry=config.enforce_requirement_expiry,
        )

    def verify(self, request_data: Any) -> VerificationResponse:
        if not isinstance(request_data, dict) or any(
                _is_missing(request_data.get(field)) for field in REQUIRED_FIELDS):
            return VerificationResponse.failure(INVALID_REQUEST, MISSING_FIELDS_DETAIL)

        try:
            request = VerificationRequest.model_validate(request_data)
        except PydanticValidationError as exc:
            logger.debug('verification request failed validation: {}', exc)
            fields = ', '.join(str(error['loc'][0]) for error in exc.errors() if error['loc'])
            return VerificationResponse.failure(INVALID_REQUEST, f'Invalid fields: {fields}')

        if self.policy is None:
            return VerificationResponse.failure(
                UNSUPPORTED_MODE, f'Mode {self.mode} is not supported')

        if (self.enforce_requirement_expiry and request.expires_at is not None
                and request.expires_at <= utc_now()):
            logger.info('rejected proof for expired requirement {}', request.request_id)
            return VerificationResponse.failure(
                REQUIREMENT_EXPIRED, f'Payment requirement {request.request_id} has expired')

        try:
            result = self.policy.admit(request)
        except Exception as exc:
            logger.error('verification error for {}: {}', request.payer, exc)
            return VerificationResponse.failure(
                VERIFICATION_ERROR, f'Failed to verify transaction: {exc}')

        if not result.admitted:
            logger.info('verification rejected for {}: {} ({})',
                        request.payer, result.error, result.detail)
            return VerificationResponse.failure(
                result.error or VERIFICATION_FAILED, result.detail or 'Payment not admitted')

        record = self._mint(request, (result.details or {}).get('transaction'))
        logger.info('[{}] Payment verified, token: {}', self.mode.upper(), record.token)
        return VerificationResponse.success(record.token, issued_at=record.issued_at)

    def lookup(self, token: str) -> Optional[VerificationRecord]:
        return self.store.get(token)

    def _mint(self, request: VerificationRequest, transaction: Optional[str]) -> VerificationRecord:
        while True:
            record = VerificationRecord(
                token=mint_token(self.policy.token_prefix),
                payer=request.payer,
                amount=request.amount,
                chain=request.chain,
                issued_at=utc_now(),
                request_id=request.request_id,
                transaction=transaction,
            )
            try:
                self.store.put(record.token, record)
            except DuplicateTokenError:
                logger.warning('token collision on {}, minting again', record.token)
                continue
            return record
