import asyncio
import json
import re
import unittest
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import base58
import httpx
from pydantic import ValidationError
from solders.keypair import Keypair

from x402sdk import (
    ConfigurationError,
    HandshakeTimeout,
    MalformedResponse,
    PaymentRequirement,
    ProofConstructionFailed,
    RequirementExpired,
    TransportFailure,
    VerificationFailed,
    VerificationResponse,
    X402Client,
    X402Error,
    create_solana_payment,
    has_accepted_prefix,
    load_keypair,
    mint_token,
)
from x402sdk.types import isoformat_z, utc_now

SELLER_URL = 'http://seller.test/inference'
VERIFIER_URL = 'http://verifier.test/verify'


def _requirement(**overrides) -> PaymentRequirement:
    values = dict(
        product_id='api_inference_v1',
        amount=1000,
        currency='USDC',
        chain='solana',
        verifier_endpoint=VERIFIER_URL,
    )
    values.update(overrides)
    return PaymentRequirement.issue(**values)


class FakeNetwork:
    """Seller and verifier behind a single mock transport."""

    def __init__(self, requirement=None, verify_response=None, seller_always_402=False,
                 paid_status=200):
        self.requirement = requirement or _requirement()
        self.verify_response = verify_response or VerificationResponse.success('mock-sig:2ae543fa8192d9a4')
        self.seller_always_402 = seller_always_402
        self.paid_status = paid_status
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == 'verifier.test' or request.url.path.endswith('/verify'):
            status = 200 if self.verify_response.ok else 400
            return httpx.Response(status, json=self.verify_response.to_wire())

        if 'x-payment' not in request.headers or self.seller_always_402:
            return httpx.Response(402, json={
                'error': 'payment_required',
                'message': 'Payment is required to access this resource',
                'payment_requirements': self.requirement.to_wire(),
            })
        if self.paid_status == 403:
            return httpx.Response(403, json={
                'error': 'invalid_payment',
                'message': 'The provided payment token is invalid',
            })
        prompt = json.loads(request.content).get('prompt', '')
        return httpx.Response(200, json={'result': f'Processed inference for: "{prompt}"'})

    def client(self, **options) -> X402Client:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return X402Client(http_client=http_client, **options)


class X402ClientHandshakeTests(unittest.IsolatedAsyncioTestCase):

    async def test_full_handshake(self):
        network = FakeNetwork()
        async with network.client(payer_identity='wallet-1') as client:
            response = await client.request_with_auto_pay('POST', SELLER_URL, json={'prompt': 'Hello'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['result'], 'Processed inference for: "Hello"')
        self.assertEqual(len(network.requests), 3)

        initial, verify, retry = network.requests
        self.assertNotIn('x-payment', initial.headers)
        self.assertEqual(str(verify.url), VERIFIER_URL)
        body = json.loads(verify.content)
        self.assertEqual(body['payer'], 'wallet-1')
        self.assertEqual(body['amount'], 1000)
        self.assertEqual(body['chain'], 'solana')
        self.assertEqual(body['request_id'], network.requirement.requirement_id)
        self.assertEqual(body['proof']['signature'], f'mock-proof-{network.requirement.requirement_id}')
        self.assertEqual(body['proof']['payer'], 'wallet-1')
        self.assertEqual(retry.headers['x-payment'], 'mock-sig:2ae543fa8192d9a4')
        self.assertEqual(json.loads(retry.content), {'prompt': 'Hello'})

    async def test_non_402_returned_unchanged(self):
        async def handler(request):
            return httpx.Response(404, json={'error': 'not_found'})

        client = X402Client(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        response = await client.request_with_auto_pay('GET', SELLER_URL)

        self.assertEqual(response.status_code, 404)

    async def test_caller_payment_header_not_sent_initially(self):
        network = FakeNetwork()
        client = network.client()

        await client.request_with_auto_pay(
            'POST', SELLER_URL, json={'prompt': 'x'}, headers={'X-PAYMENT': 'stale', 'X-Trace': '1'})

        initial, _, retry = network.requests
        self.assertNotIn('x-payment', initial.headers)
        self.assertEqual(initial.headers['x-trace'], '1')
        self.assertEqual(retry.headers['x-payment'], 'mock-sig:2ae543fa8192d9a4')
        self.assertEqual(retry.headers['x-trace'], '1')

    async def test_single_retry_even_if_still_402(self):
        network = FakeNetwork(seller_always_402=True)

        response = await network.client().request_with_auto_pay('POST', SELLER_URL, json={})

        self.assertEqual(response.status_code, 402)
        self.assertEqual(len(network.requests), 3)

    async def test_single_retry_when_token_rejected(self):
        network = FakeNetwork(paid_status=403)

        response = await network.client().request_with_auto_pay('POST', SELLER_URL, json={})

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()['error'], 'invalid_payment')
        self.assertEqual(len(network.requests), 3)

    async def test_facilitator_url_override(self):
        network = FakeNetwork()
        client = network.client(facilitator_url='http://other.test/verify')

        await client.request_with_auto_pay('POST', SELLER_URL, json={})

        self.assertEqual(str(network.requests[1].url), 'http://other.test/verify')

    async def test_verification_failure(self):
        network = FakeNetwork(
            verify_response=VerificationResponse.failure('invalid_proof', 'no signature'))

        with self.assertRaises(VerificationFailed) as ctx:
            await network.client().request_with_auto_pay('POST', SELLER_URL, json={})

        self.assertEqual(ctx.exception.code, 'invalid_proof')
        self.assertEqual(ctx.exception.detail, 'no signature')
        self.assertEqual(str(ctx.exception), 'Payment verification failed: invalid_proof')
        self.assertEqual(len(network.requests), 2)

    async def test_expired_requirement_not_paid(self):
        expired = _requirement().model_copy(update={'expires_at': utc_now() - timedelta(seconds=1)})
        network = FakeNetwork(requirement=expired)

        with self.assertRaises(RequirementExpired):
            await network.client().request_with_auto_pay('POST', SELLER_URL, json={})

        self.assertEqual(len(network.requests), 1)

    async def test_402_without_requirements(self):
        async def handler(request):
            return httpx.Response(402, json={'error': 'payment_required'})

        client = X402Client(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with self.assertRaises(MalformedResponse) as ctx:
            await client.request_with_auto_pay('GET', SELLER_URL)
        self.assertEqual(ctx.exception.message, '402 response missing payment_requirements field')

    async def test_402_with_non_json_body(self):
        async def handler(request):
            return httpx.Response(402, content=b'<html>pay up</html>')

        client = X402Client(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with self.assertRaises(MalformedResponse):
            await client.request_with_auto_pay('GET', SELLER_URL)

    async def test_402_with_invalid_requirement(self):
        async def handler(request):
            wire = _requirement().to_wire()
            wire['amount'] = -1
            return httpx.Response(402, json={'payment_requirements': wire})

        client = X402Client(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with self.assertRaises(MalformedResponse):
            await client.request_with_auto_pay('GET', SELLER_URL)

    async def test_402_with_expiry_missing_timezone(self):
        requests = []

        async def handler(request):
            requests.append(request)
            wire = _requirement().to_wire()
            wire['expires_at'] = '2099-01-01T00:00:00'
            return httpx.Response(402, json={'payment_requirements': wire})

        client = X402Client(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with self.assertRaises(MalformedResponse):
            await client.request_with_auto_pay('GET', SELLER_URL)
        self.assertEqual(len(requests), 1)

    async def test_unparseable_verifier_response(self):
        network = FakeNetwork()

        def handler(request):
            if request.url.host == 'verifier.test':
                return httpx.Response(502, content=b'Bad Gateway')
            return network.handler(request)

        client = X402Client(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with self.assertRaises(MalformedResponse):
            await client.request_with_auto_pay('POST', SELLER_URL, json={})

    async def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError('connection refused', request=request)

        client = X402Client(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with self.assertRaises(TransportFailure) as ctx:
            await client.request_with_auto_pay('GET', SELLER_URL)
        self.assertNotIsInstance(ctx.exception, HandshakeTimeout)

    async def test_request_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout('timed out', request=request)

        client = X402Client(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with self.assertRaises(HandshakeTimeout):
            await client.request_with_auto_pay('GET', SELLER_URL)

    async def test_handshake_timeout(self):
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200)

        client = X402Client(
            handshake_timeout=0.05,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        with self.assertRaises(HandshakeTimeout):
            await client.request_with_auto_pay('GET', SELLER_URL)

    async def test_errors_share_base_class(self):
        network = FakeNetwork(verify_response=VerificationResponse.failure('verification_failed', 'x'))

        with self.assertRaises(X402Error):
            await network.client().request_with_auto_pay('POST', SELLER_URL, json={})


class X402ClientConfigurationTests(unittest.TestCase):

    def test_unsupported_mode(self):
        with self.assertRaises(ConfigurationError):
            X402Client(mode='mainnet', http_client=httpx.AsyncClient())

    def test_devnet_requires_keypair(self):
        with self.assertRaises(ConfigurationError):
            X402Client(mode='devnet', http_client=httpx.AsyncClient())

    def test_default_payer_identity(self):
        client = X402Client(http_client=httpx.AsyncClient())

        self.assertRegex(client.payer_identity, r'^mock-wallet-[a-z0-9]{7}$')

    def test_keypair_payer_identity(self):
        keypair = Keypair()
        client = X402Client(mode='devnet', keypair=keypair, http_client=httpx.AsyncClient())

        self.assertEqual(client.payer_identity, str(keypair.pubkey()))


class DevnetProofTests(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.keypair = Keypair()
        self.recipient = str(Keypair().pubkey())
        self.client = X402Client(mode='devnet', keypair=self.keypair, http_client=httpx.AsyncClient())

    async def asyncTearDown(self):
        await self.client.http_client.aclose()

    async def test_proof_references_transaction(self):
        requirement = _requirement(currency='SOL', recipient=self.recipient)

        with patch('x402sdk.client.create_solana_payment', new=AsyncMock(return_value='5sigABC')) as pay:
            proof = await self.client.create_payment_proof(requirement)

        self.assertEqual(proof.transaction, '5sigABC')
        self.assertEqual(proof.signature, '5sigABC')
        self.assertEqual(proof.payer, str(self.keypair.pubkey()))
        args, kwargs = pay.call_args
        self.assertEqual(args, (self.keypair, self.recipient, 1000, 'SOL'))

    async def test_missing_recipient(self):
        with self.assertRaises(ProofConstructionFailed):
            await self.client.create_payment_proof(_requirement(currency='SOL'))

    async def test_payment_failure_wrapped(self):
        requirement = _requirement(currency='SOL', recipient=self.recipient)
        failing = AsyncMock(side_effect=RuntimeError('insufficient funds'))

        with patch('x402sdk.client.create_solana_payment', new=failing):
            with self.assertRaises(ProofConstructionFailed) as ctx:
                await self.client.create_payment_proof(requirement)

        self.assertEqual(ctx.exception.message, 'Failed to create Solana payment: insufficient funds')

    async def test_spl_currency_rejected(self):
        with self.assertRaises(ProofConstructionFailed) as ctx:
            await create_solana_payment(self.keypair, self.recipient, 1000, 'USDC')

        self.assertIn('USDC', ctx.exception.message)


class SolanaHelperTests(unittest.TestCase):

    def test_load_keypair(self):
        keypair = Keypair()
        secret = base58.b58encode(bytes(keypair)).decode()

        self.assertEqual(load_keypair(secret).pubkey(), keypair.pubkey())

    def test_load_keypair_rejects_garbage(self):
        with self.assertRaises(ConfigurationError):
            load_keypair(base58.b58encode(b'short').decode())


class WireModelTests(unittest.TestCase):

    def test_requirement_wire_shape(self):
        requirement = _requirement()

        wire = requirement.to_wire()

        self.assertEqual(
            set(wire), {'id', 'product', 'amount', 'currency', 'chain', 'facilitator', 'expires_at'})
        self.assertRegex(wire['id'], r'^req_[0-9a-f]{16}$')
        self.assertTrue(re.match(r'^\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z$', wire['expires_at']))
        parsed = PaymentRequirement.model_validate(wire)
        self.assertEqual(parsed.requirement_id, requirement.requirement_id)
        self.assertEqual(parsed.verifier_endpoint, VERIFIER_URL)

    def test_requirement_amount_must_be_positive(self):
        with self.assertRaises(ValidationError):
            _requirement(amount=0)

    def test_isoformat_z(self):
        now = utc_now()

        self.assertTrue(isoformat_z(now).endswith('Z'))

    def test_success_response_omits_error_fields(self):
        wire = VerificationResponse.success('mock-sig:00').to_wire()

        self.assertEqual(set(wire), {'ok', 'verification', 'settled', 'timestamp'})


class TokenTests(unittest.TestCase):

    def test_mint_token(self):
        token = mint_token('mock-sig:')

        self.assertRegex(token, r'^mock-sig:[0-9a-f]{16}$')
        self.assertNotEqual(token, mint_token('mock-sig:'))

    def test_has_accepted_prefix(self):
        prefixes = ('mock-sig:', 'devnet-sig:')

        self.assertTrue(has_accepted_prefix('devnet-sig:abc', prefixes))
        self.assertFalse(has_accepted_prefix('', prefixes))
        self.assertFalse(has_accepted_prefix('  ', prefixes))
        self.assertFalse(has_accepted_prefix('MOCK-SIG:abc', prefixes))
