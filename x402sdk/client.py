"""
Client orchestrator for the x402 payment handshake.

One call to :meth:`X402Client.request_with_auto_pay` runs at most one payment
cycle::

    initial request -> 402 -> parse requirements -> build proof
        -> POST /verify -> retry with X-PAYMENT -> final response
"""
import asyncio
import json
import random
import string
from typing import Any, Dict, Optional

import httpx
from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from solders.keypair import Keypair

from .errors import (
    ConfigurationError,
    HandshakeTimeout,
    MalformedResponse,
    ProofConstructionFailed,
    RequirementExpired,
    TransportFailure,
    VerificationFailed,
)
from .solana_utils import DEFAULT_RPC_URL, create_solana_payment
from .types import (
    PAYMENT_HEADER,
    PaymentProof,
    PaymentRequirement,
    VerificationRequest,
    VerificationResponse,
    isoformat_z,
    utc_now,
)

MODE_MOCK = 'mock'
MODE_DEVNET = 'devnet'
SUPPORTED_MODES = (MODE_MOCK, MODE_DEVNET)

DEFAULT_TIMEOUT_SECONDS = 30.0


def _random_wallet_name() -> str:
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f'mock-wallet-{suffix}'


class X402Client:
    """
    Drives the request/402/verify/retry handshake against x402 services.

    The client keeps no per-handshake state: proofs and tokens live only in
    the frame of the call that produced them.
    """

    def __init__(
        self,
        *,
        facilitator_url: Optional[str] = None,
        mode: str = MODE_MOCK,
        payer_identity: Optional[str] = None,
        keypair: Optional[Keypair] = None,
        solana_rpc_url: str = DEFAULT_RPC_URL,
        timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
        handshake_timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if mode not in SUPPORTED_MODES:
            raise ConfigurationError(
                f"Unsupported mode: {mode}. Supported modes: {', '.join(SUPPORTED_MODES)}")
        if mode == MODE_DEVNET and keypair is None:
            raise ConfigurationError('keypair is required for devnet mode')

        self.facilitator_url = facilitator_url
        self.mode = mode
        self.keypair = keypair
        self.solana_rpc_url = solana_rpc_url
        self.handshake_timeout = handshake_timeout
        if payer_identity:
            self.payer_identity = payer_identity
        elif keypair is not None:
            self.payer_identity = str(keypair.pubkey())
        else:
            self.payer_identity = _random_wallet_name()

        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> 'X402Client':
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()

    async def request_with_auto_pay(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Issue ``method url`` and pay for it if the server answers 402.

        ``kwargs`` are passed to :meth:`httpx.AsyncClient.request` for both the
        initial and the retried request. The retried response is returned
        whatever its status; a second 402 is not paid for again.
        """
        if self.handshake_timeout is None:
            return await self._handshake(method, url, kwargs)
        try:
            return await asyncio.wait_for(
                self._handshake(method, url, kwargs), timeout=self.handshake_timeout)
        except asyncio.TimeoutError as exc:
            raise HandshakeTimeout(
                f'Handshake for {method} {url} exceeded {self.handshake_timeout}s') from exc

    async def _handshake(self, method: str, url: str, kwargs: Dict[str, Any]) -> httpx.Response:
        initial_kwargs = dict(kwargs)
        headers = httpx.Headers(initial_kwargs.pop('headers', None))
        if PAYMENT_HEADER in headers:
            del headers[PAYMENT_HEADER]

        response = await self._send(method, url, headers=headers, **initial_kwargs)
        if response.status_code != 402:
            return response

        requirement = await self.parse_payment_requirements(response)
        logger.info('[SDK] Payment required: {} {} (requirement {})',
                    requirement.amount, requirement.currency, requirement.requirement_id)

        proof = await self.create_payment_proof(requirement)
        token = await self.verify_payment(proof, requirement)
        logger.info('[SDK] Payment verified for requirement {}', requirement.requirement_id)

        retry_headers = httpx.Headers(headers)
        retry_headers[PAYMENT_HEADER] = token
        return await self._send(method, url, headers=retry_headers, **initial_kwargs)

    async def parse_payment_requirements(self, response: httpx.Response) -> PaymentRequirement:
        try:
            body = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MalformedResponse('402 response body is not valid JSON') from exc

        if not isinstance(body, dict) or not body.get('payment_requirements'):
            raise MalformedResponse('402 response missing payment_requirements field')

        try:
            requirement = PaymentRequirement.model_validate(body['payment_requirements'])
        except PydanticValidationError as exc:
            logger.debug('payment requirement validation failed: {}', exc)
            raise MalformedResponse(
                '402 response carries invalid payment_requirements',
                {'errors': exc.errors(include_url=False)},
            ) from exc

        if requirement.is_expired():
            raise RequirementExpired(
                f'Payment requirement {requirement.requirement_id} expired at '
                f'{isoformat_z(requirement.expires_at)}')
        return requirement

    async def create_payment_proof(self, requirement: PaymentRequirement) -> PaymentProof:
        timestamp = isoformat_z(utc_now())

        if self.mode == MODE_MOCK:
            return PaymentProof(
                payer=self.payer_identity,
                timestamp=timestamp,
                signature=f'mock-proof-{requirement.requirement_id}',
            )

        if self.keypair is None:
            raise ProofConstructionFailed('Solana keypair required for devnet payments')
        if not requirement.recipient:
            raise ProofConstructionFailed(
                'Payment requirements missing recipient wallet address for devnet payment')

        logger.info('[SDK] Creating Solana payment: {} {} to {}',
                    requirement.amount, requirement.currency, requirement.recipient)
        try:
            tx_signature = await create_solana_payment(
                self.keypair,
                requirement.recipient,
                requirement.amount,
                requirement.currency,
                rpc_url=self.solana_rpc_url,
            )
        except Exception as exc:
            raise ProofConstructionFailed(f'Failed to create Solana payment: {exc}') from exc

        logger.info('[SDK] Payment transaction sent: {}', tx_signature)
        return PaymentProof(
            payer=self.payer_identity,
            timestamp=timestamp,
            signature=tx_signature,
            transaction=tx_signature,
        )

    async def verify_payment(self, proof: PaymentProof, requirement: PaymentRequirement) -> str:
        """Submit ``proof`` to the verifier and return the verification token."""
        verify_url = self.facilitator_url or requirement.verifier_endpoint
        body = VerificationRequest(
            proof=proof.to_wire(),
            payer=self.payer_identity,
            amount=requirement.amount,
            chain=requirement.chain,
            request_id=requirement.requirement_id,
            expires_at=requirement.expires_at,
        ).to_wire()

        logger.debug('Submitting payment proof for verification to {}', verify_url)
        response = await self._send('POST', verify_url, json=body)

        try:
            result = VerificationResponse.model_validate(response.json())
        except (json.JSONDecodeError, UnicodeDecodeError, PydanticValidationError) as exc:
            raise MalformedResponse(
                f'Verifier at {verify_url} responded with {response.status_code}: {response.text}'
            ) from exc

        if not result.ok:
            raise VerificationFailed(result.error or 'unknown_error', result.detail)
        if not result.verification:
            raise MalformedResponse('Verifier response missing verification token')
        return result.verification

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self.http_client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise HandshakeTimeout(f'{method} {url} timed out: {exc}') from exc
        except httpx.HTTPError as exc:
            raise TransportFailure(f'{method} {url} failed: {exc}') from exc
