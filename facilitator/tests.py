import json
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest.mock import patch

from django.test import SimpleTestCase, override_settings
from django.urls import reverse

from x402sdk.types import isoformat_z, utc_now

from facilitator.admission import AdmissionPolicy, AdmissionResult, AlwaysAdmit
from facilitator.store import DuplicateTokenError, VerificationRecord, VerificationStore
from facilitator.verifier import Verifier


def _verify_body(**overrides) -> dict:
    body = {
        'proof': {
            'timestamp': '2025-01-01T00:00:00.000Z',
            'payer': 'mock-wallet-abc1234',
            'signature': 'mock-proof-req_0011223344556677',
        },
        'payer': 'mock-wallet-abc1234',
        'amount': 1000,
        'chain': 'solana',
        'request_id': 'req_0011223344556677',
    }
    body.update(overrides)
    return body


@override_settings(
    ROOT_URLCONF='core.urls_facilitator',
    FACILITATOR_MODE='mock',
    FACILITATOR_PORT=5000,
    X402_ENFORCE_REQUIREMENT_EXPIRY=False,
)
class VerifyViewTests(SimpleTestCase):

    def _post(self, body):
        return self.client.post(
            reverse('facilitator:verify'),
            data=json.dumps(body),
            content_type='application/json',
        )

    def test_verify_mints_mock_token(self):
        response = self._post(_verify_body())

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['ok'])
        self.assertTrue(body['settled'])
        self.assertTrue(body['verification'].startswith('mock-sig:'))
        self.assertEqual(len(body['verification']), len('mock-sig:') + 16)
        self.assertTrue(body['timestamp'].endswith('Z'))
        self.assertNotIn('error', body)

    def test_verify_accepts_arbitrary_proof_object(self):
        response = self._post(_verify_body(proof={'stub': True}))

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()['ok'])

    def test_missing_fields_rejected(self):
        for missing in ('proof', 'payer', 'amount'):
            with self.subTest(missing=missing):
                body = _verify_body()
                del body[missing]
                response = self._post(body)

                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json(), {
                    'ok': False,
                    'error': 'invalid_request',
                    'detail': 'Missing required fields: proof, payer, amount',
                })

    def test_zero_amount_counts_as_missing(self):
        response = self._post(_verify_body(amount=0))

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['detail'], 'Missing required fields: proof, payer, amount')

    def test_negative_amount_rejected(self):
        response = self._post(_verify_body(amount=-5))

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body['error'], 'invalid_request')
        self.assertIn('amount', body['detail'])

    def test_non_json_body_rejected(self):
        response = self.client.post(
            reverse('facilitator:verify'),
            data='{not json',
            content_type='application/json',
        )

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertFalse(body['ok'])
        self.assertEqual(body['error'], 'invalid_request')

    def test_json_array_body_rejected(self):
        response = self._post([1, 2, 3])

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'invalid_request')

    def test_repeated_verification_issues_distinct_tokens(self):
        first = self._post(_verify_body()).json()['verification']
        second = self._post(_verify_body()).json()['verification']

        self.assertNotEqual(first, second)

    def test_lookup_returns_minted_record(self):
        token = self._post(_verify_body()).json()['verification']

        response = self.client.get(reverse('facilitator:verification', args=[token]))

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['ok'])
        self.assertEqual(body['token'], token)
        self.assertEqual(body['payer'], 'mock-wallet-abc1234')
        self.assertEqual(body['amount'], 1000)
        self.assertEqual(body['request_id'], 'req_0011223344556677')

    def test_lookup_unknown_token(self):
        response = self.client.get(
            reverse('facilitator:verification', args=['mock-sig:0000000000000000']))

        self.assertEqual(response.status_code, 404)
        body = response.json()
        self.assertFalse(body['ok'])
        self.assertEqual(body['error'], 'unknown_token')

    def test_health(self):
        response = self.client.get(reverse('facilitator:health'))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            'status': 'ok',
            'service': 'mock-facilitator',
            'mode': 'mock',
            'supported_modes': ['mock', 'devnet'],
            'port': 5000,
        })

    @override_settings(FACILITATOR_MODE='mainnet')
    def test_unsupported_mode(self):
        response = self._post(_verify_body())

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {
            'ok': False,
            'error': 'unsupported_mode',
            'detail': 'Mode mainnet is not supported',
        })
        health = self.client.get(reverse('facilitator:health')).json()
        self.assertEqual(health['mode'], 'mainnet')
        self.assertNotIn('mainnet', health['supported_modes'])

    @override_settings(FACILITATOR_MODE='mainnet')
    def test_missing_fields_checked_before_mode(self):
        response = self._post({'payer': 'someone'})

        self.assertEqual(response.json()['error'], 'invalid_request')

    @override_settings(X402_ENFORCE_REQUIREMENT_EXPIRY=True)
    def test_expired_requirement_rejected_when_enforced(self):
        expired = isoformat_z(utc_now() - timedelta(seconds=1))
        response = self._post(_verify_body(expires_at=expired))

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'requirement_expired')

    @override_settings(X402_ENFORCE_REQUIREMENT_EXPIRY=True)
    def test_expiry_without_timezone_rejected_as_invalid_request(self):
        response = self._post(_verify_body(proof={'stub': True}, expires_at='2020-01-01T00:00:00'))

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {
            'ok': False,
            'error': 'invalid_request',
            'detail': 'Invalid fields: expires_at',
        })

    def test_expired_requirement_admitted_by_default(self):
        expired = isoformat_z(utc_now() - timedelta(seconds=1))
        response = self._post(_verify_body(expires_at=expired))

        self.assertEqual(response.status_code, 200)


class ExplodingPolicy(AdmissionPolicy):

    @property
    def mode(self) -> str:
        return 'exploding'

    @property
    def token_prefix(self) -> str:
        return 'boom-sig:'

    def admit(self, request):
        raise RuntimeError('rpc unreachable')


class RejectingPolicy(ExplodingPolicy):

    def admit(self, request):
        return AdmissionResult(admitted=False, error='invalid_proof', detail='no signature')


class VerifierTests(SimpleTestCase):

    def test_policy_exception_becomes_verification_error(self):
        verifier = Verifier(ExplodingPolicy({}), VerificationStore())

        result = verifier.verify(_verify_body())

        self.assertFalse(result.ok)
        self.assertEqual(result.error, 'verification_error')
        self.assertEqual(result.detail, 'Failed to verify transaction: rpc unreachable')
        self.assertEqual(len(verifier.store), 0)

    def test_policy_rejection_is_passed_through(self):
        verifier = Verifier(RejectingPolicy({}), VerificationStore())

        result = verifier.verify(_verify_body())

        self.assertEqual(result.to_wire(), {
            'ok': False, 'error': 'invalid_proof', 'detail': 'no signature'})

    def test_token_prefix_follows_policy(self):
        class PrefixedPolicy(AlwaysAdmit):
            @property
            def token_prefix(self) -> str:
                return 'devnet-sig:'

        verifier = Verifier(PrefixedPolicy({}), VerificationStore())

        self.assertTrue(verifier.verify(_verify_body()).verification.startswith('devnet-sig:'))

    def test_token_collision_mints_again(self):
        verifier = Verifier(AlwaysAdmit({}), VerificationStore())
        tokens = ['mock-sig:aaaaaaaaaaaaaaaa', 'mock-sig:aaaaaaaaaaaaaaaa', 'mock-sig:bbbbbbbbbbbbbbbb']

        with patch('facilitator.verifier.mint_token', side_effect=tokens):
            first = verifier.verify(_verify_body()).verification
            second = verifier.verify(_verify_body()).verification

        self.assertEqual(first, 'mock-sig:aaaaaaaaaaaaaaaa')
        self.assertEqual(second, 'mock-sig:bbbbbbbbbbbbbbbb')
        self.assertEqual(len(verifier.store), 2)

    def test_concurrent_verifications_get_distinct_tokens(self):
        verifier = Verifier(AlwaysAdmit({}), VerificationStore())

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: verifier.verify(_verify_body()), range(64)))

        tokens = {result.verification for result in results}
        self.assertTrue(all(result.ok for result in results))
        self.assertEqual(len(tokens), 64)
        self.assertEqual(len(verifier.store), 64)
        self.assertEqual(len(verifier.store.by_request('req_0011223344556677')), 64)


class VerificationStoreTests(SimpleTestCase):

    def _record(self, token, request_id='req_1'):
        return VerificationRecord(
            token=token, payer='payer', amount=10, chain='solana',
            issued_at=utc_now(), request_id=request_id)

    def test_put_refuses_existing_token(self):
        store = VerificationStore()
        store.put('mock-sig:1', self._record('mock-sig:1'))

        with self.assertRaises(DuplicateTokenError):
            store.put('mock-sig:1', self._record('mock-sig:1'))
        self.assertEqual(len(store), 1)

    def test_get_and_by_request(self):
        store = VerificationStore()
        store.put('mock-sig:1', self._record('mock-sig:1'))
        store.put('mock-sig:2', self._record('mock-sig:2'))
        store.put('mock-sig:3', self._record('mock-sig:3', request_id=None))

        self.assertEqual(store.get('mock-sig:2').token, 'mock-sig:2')
        self.assertIsNone(store.get('mock-sig:9'))
        self.assertEqual([r.token for r in store.by_request('req_1')], ['mock-sig:1', 'mock-sig:2'])
        self.assertEqual(store.by_request('req_unknown'), [])

    def test_record_wire_shape_omits_unset_fields(self):
        wire = self._record('mock-sig:1', request_id=None).to_wire()

        self.assertEqual(set(wire), {'token', 'payer', 'amount', 'chain', 'issued_at'})
        self.assertTrue(wire['issued_at'].endswith('Z'))
