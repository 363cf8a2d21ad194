import json
from datetime import timedelta

import httpx
from django.test import SimpleTestCase, override_settings
from django.urls import reverse

from x402sdk.types import PaymentRequirement, utc_now

from seller.config import SellerConfig
from seller.gate import AcceptDecision, PaymentGate
from seller.lookup import RemoteTokenLookup
from seller.services import get_gate

SELLER_SETTINGS = dict(
    ROOT_URLCONF='core.urls_seller',
    SELLER_PORT=4000,
    FACILITATOR_URL='http://localhost:5000/verify',
    PRODUCT_ID='api_inference_v1',
    PRODUCT_AMOUNT=1000,
    PRODUCT_CURRENCY='USDC',
    PRODUCT_CHAIN='solana',
    SELLER_WALLET_ADDRESS='',
    X402_REQUIREMENT_TTL_SECONDS=300,
    X402_ACCEPTED_TOKEN_PREFIXES=['mock-sig:', 'devnet-sig:'],
    X402_SELLER_VERIFY_TOKENS=False,
)


def _config(**overrides) -> SellerConfig:
    values = dict(
        port=4000,
        facilitator_url='http://localhost:5000/verify',
        product_id='api_inference_v1',
        amount=1000,
        currency='USDC',
        chain='solana',
        requirement_ttl_seconds=300,
        accepted_token_prefixes=('mock-sig:', 'devnet-sig:'),
    )
    values.update(overrides)
    return SellerConfig(**values)


@override_settings(**SELLER_SETTINGS)
class InferenceViewTests(SimpleTestCase):

    def _post(self, body=None, **headers):
        return self.client.post(
            reverse('seller:inference'),
            data=json.dumps(body if body is not None else {'prompt': 'Hello'}),
            content_type='application/json',
            **headers,
        )

    def test_missing_header_returns_requirements(self):
        response = self._post()

        self.assertEqual(response.status_code, 402)
        body = response.json()
        self.assertEqual(body['error'], 'payment_required')
        self.assertEqual(body['message'], 'Payment is required to access this resource')
        requirement = body['payment_requirements']
        self.assertRegex(requirement['id'], r'^req_[0-9a-f]{16}$')
        self.assertEqual(requirement['product'], 'api_inference_v1')
        self.assertEqual(requirement['amount'], 1000)
        self.assertEqual(requirement['currency'], 'USDC')
        self.assertEqual(requirement['chain'], 'solana')
        self.assertEqual(requirement['facilitator'], 'http://localhost:5000/verify')
        self.assertNotIn('recipient', requirement)

        expires_at = PaymentRequirement.model_validate(requirement).expires_at
        remaining = (expires_at - utc_now()).total_seconds()
        self.assertTrue(295 < remaining <= 300)

    def test_each_402_carries_fresh_requirement(self):
        first = self._post().json()['payment_requirements']['id']
        second = self._post().json()['payment_requirements']['id']

        self.assertNotEqual(first, second)

    @override_settings(SELLER_WALLET_ADDRESS='9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin')
    def test_requirement_carries_recipient_when_configured(self):
        requirement = self._post().json()['payment_requirements']

        self.assertEqual(requirement['recipient'], '9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin')

    def test_invalid_tokens_rejected_without_requirements(self):
        for token in ('', '   ', 'invalid-token', 'sig:mock-sig:abc'):
            with self.subTest(token=token):
                response = self._post(HTTP_X_PAYMENT=token)

                self.assertEqual(response.status_code, 403)
                self.assertEqual(response.json(), {
                    'error': 'invalid_payment',
                    'message': 'The provided payment token is invalid',
                })

    def test_valid_token_admitted(self):
        response = self._post({'prompt': 'Hello, world'}, HTTP_X_PAYMENT='mock-sig:2ae543fa8192d9a4')

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['result'], 'Processed inference for: "Hello, world"')
        self.assertEqual(body['model'], 'mock-model-v1')
        self.assertEqual(body['cost_charged'], 1000)
        self.assertTrue(body['timestamp'].endswith('Z'))

    def test_devnet_token_admitted(self):
        response = self._post(HTTP_X_PAYMENT='devnet-sig:0011223344556677')

        self.assertEqual(response.status_code, 200)

    def test_missing_prompt_rendered_empty(self):
        response = self._post({}, HTTP_X_PAYMENT='mock-sig:2ae543fa8192d9a4')

        self.assertEqual(response.json()['result'], 'Processed inference for: ""')

    def test_body_not_read_before_payment(self):
        response = self.client.post(
            reverse('seller:inference'), data='{broken', content_type='application/json')

        self.assertEqual(response.status_code, 402)

    def test_broken_body_with_valid_token(self):
        response = self.client.post(
            reverse('seller:inference'),
            data='{broken',
            content_type='application/json',
            HTTP_X_PAYMENT='mock-sig:2ae543fa8192d9a4',
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'invalid_request')

    @override_settings(PRODUCT_AMOUNT=2500, PRODUCT_CURRENCY='SOL')
    def test_price_follows_settings(self):
        requirement = self._post().json()['payment_requirements']

        self.assertEqual((requirement['amount'], requirement['currency']), (2500, 'SOL'))

    @override_settings(X402_ACCEPTED_TOKEN_PREFIXES=['mock-sig:'])
    def test_accepted_prefixes_follow_settings(self):
        response = self._post(HTTP_X_PAYMENT='devnet-sig:0011223344556677')

        self.assertEqual(response.status_code, 403)

    def test_health(self):
        response = self.client.get(reverse('seller:health'))

        self.assertEqual(response.json(), {'status': 'ok', 'service': 'mock-seller', 'port': 4000})

    @override_settings(X402_SELLER_VERIFY_TOKENS=True)
    def test_verify_tokens_setting_enables_lookup(self):
        gate = get_gate()

        self.assertIsInstance(gate.lookup, RemoteTokenLookup)
        self.assertEqual(gate.lookup.base_url, 'http://localhost:5000')


class PaymentGateTests(SimpleTestCase):

    def test_requirement_uses_configured_window(self):
        gate = PaymentGate(_config(requirement_ttl_seconds=60))

        requirement = gate.issue_requirement()

        self.assertFalse(requirement.is_expired())
        self.assertTrue(requirement.is_expired(utc_now() + timedelta(seconds=61)))

    def test_accept_token(self):
        gate = PaymentGate(_config())

        self.assertIs(gate.accept_token('mock-sig:abc'), AcceptDecision.ACCEPT)
        self.assertIs(gate.accept_token(None), AcceptDecision.REJECT)
        self.assertIs(gate.accept_token('\t'), AcceptDecision.REJECT)
        self.assertIs(gate.accept_token('Bearer mock-sig:abc'), AcceptDecision.REJECT)

    def test_serve_ignores_non_object_body(self):
        result = PaymentGate(_config()).serve(['not', 'an', 'object'])

        self.assertEqual(result['result'], 'Processed inference for: ""')

    def test_verifier_base_url(self):
        self.assertEqual(_config(facilitator_url='http://v.test/verify/').verifier_base_url, 'http://v.test')
        self.assertEqual(
            _config(facilitator_url='http://h.test/facilitator/verify').verifier_base_url,
            'http://h.test/facilitator',
        )


class RemoteTokenLookupTests(SimpleTestCase):

    def _lookup(self, handler) -> RemoteTokenLookup:
        return RemoteTokenLookup(
            'http://verifier.test/', http_client=httpx.Client(transport=httpx.MockTransport(handler)))

    def test_known_token_accepted(self):
        seen = []

        def handler(request):
            seen.append(request.url.path)
            return httpx.Response(200, json={'ok': True})

        gate = PaymentGate(_config(), self._lookup(handler))

        self.assertIs(gate.accept_token('mock-sig:2ae543fa8192d9a4'), AcceptDecision.ACCEPT)
        self.assertEqual(seen, ['/verifications/mock-sig:2ae543fa8192d9a4'])

    def test_unknown_token_rejected(self):
        gate = PaymentGate(_config(), self._lookup(
            lambda request: httpx.Response(404, json={'ok': False, 'error': 'unknown_token'})))

        self.assertIs(gate.accept_token('mock-sig:forged000000000'), AcceptDecision.REJECT)

    def test_prefix_checked_before_lookup(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200)

        gate = PaymentGate(_config(), self._lookup(handler))

        self.assertIs(gate.accept_token('other:abc'), AcceptDecision.REJECT)
        self.assertEqual(calls, [])

    def test_transport_error_rejects(self):
        def handler(request):
            raise httpx.ConnectError('refused', request=request)

        lookup = self._lookup(handler)

        self.assertFalse(lookup.is_known('mock-sig:2ae543fa8192d9a4'))

    def test_server_error_rejects(self):
        lookup = self._lookup(lambda request: httpx.Response(500))

        self.assertFalse(lookup.is_known('mock-sig:2ae543fa8192d9a4'))
