import json
import unittest
from unittest.mock import MagicMock, patch

import httpx
from django.test import SimpleTestCase, override_settings
from django.urls import reverse
from solana.exceptions import SolanaRpcException
from solders.keypair import Keypair

from x402sdk.types import VerificationRequest

from facilitator.admission import (
    AlwaysAdmit,
    SettlementVerifying,
    UnknownModeError,
    policy_for_mode,
    supported_modes,
)

SIGNATURE = str(Keypair().sign_message(b'x402 payment'))


def _request(proof) -> VerificationRequest:
    return VerificationRequest(proof=proof, payer='payer-pubkey', amount=1000)


def _rpc_response(found=True, err=None):
    response = MagicMock()
    if not found:
        response.value = None
    else:
        response.value.transaction.meta.err = err
    return response


class ModeRegistryTests(unittest.TestCase):

    def test_policy_for_mode(self):
        self.assertIsInstance(policy_for_mode(' Mock '), AlwaysAdmit)
        self.assertIsInstance(policy_for_mode('devnet'), SettlementVerifying)

    def test_unknown_mode(self):
        with self.assertRaises(UnknownModeError) as ctx:
            policy_for_mode('mainnet')
        self.assertEqual(ctx.exception.mode, 'mainnet')
        self.assertIn('known: mock, devnet', str(ctx.exception))

    def test_supported_modes(self):
        self.assertEqual(supported_modes(), ['mock', 'devnet'])


class AlwaysAdmitTests(unittest.TestCase):

    def test_admits_any_proof(self):
        policy = AlwaysAdmit({})

        self.assertTrue(policy.admit(_request({'stub': True})).admitted)
        self.assertEqual(policy.token_prefix, 'mock-sig:')


class SettlementVerifyingTests(unittest.TestCase):

    def setUp(self):
        patcher = patch('facilitator.admission.solana_devnet.Client')
        self.client_class = patcher.start()
        self.addCleanup(patcher.stop)
        self.rpc = self.client_class.return_value
        self.policy = SettlementVerifying({'rpc_url': 'http://rpc.test', 'rpc_timeout_seconds': 3})

    def test_missing_signature(self):
        result = self.policy.admit(_request({'payer': 'payer-pubkey'}))

        self.assertFalse(result.admitted)
        self.assertEqual(result.error, 'invalid_proof')
        self.assertEqual(result.detail, 'Missing transaction signature in proof')
        self.rpc.get_transaction.assert_not_called()

    def test_confirmed_transaction_admitted(self):
        self.rpc.get_transaction.return_value = _rpc_response()

        result = self.policy.admit(_request({'transaction': SIGNATURE}))

        self.assertTrue(result.admitted)
        self.assertEqual(result.details, {'transaction': SIGNATURE})
        self.assertEqual(self.client_class.call_args.args[0], 'http://rpc.test')
        _, kwargs = self.rpc.get_transaction.call_args
        self.assertEqual(kwargs['max_supported_transaction_version'], 0)

    def test_signature_field_is_used_as_fallback(self):
        self.rpc.get_transaction.return_value = _rpc_response()

        self.assertTrue(self.policy.admit(_request({'signature': SIGNATURE})).admitted)

    def test_transaction_not_found(self):
        self.rpc.get_transaction.return_value = _rpc_response(found=False)

        result = self.policy.admit(_request({'transaction': SIGNATURE}))

        self.assertFalse(result.admitted)
        self.assertEqual(result.error, 'verification_failed')
        self.assertEqual(result.detail, 'Transaction not found')

    def test_failed_transaction(self):
        self.rpc.get_transaction.return_value = _rpc_response(err={'InstructionError': [0, 'Custom']})

        result = self.policy.admit(_request({'transaction': SIGNATURE}))

        self.assertFalse(result.admitted)
        self.assertEqual(result.detail, 'Transaction failed on-chain')

    def test_rpc_error_rejects_without_raising(self):
        self.rpc.get_transaction.side_effect = SolanaRpcException('node unhealthy')

        result = self.policy.admit(_request({'transaction': SIGNATURE}))

        self.assertFalse(result.admitted)
        self.assertEqual(result.error, 'verification_failed')
        self.assertEqual(result.detail, 'Verification error: node unhealthy')

    def test_malformed_signature(self):
        result = self.policy.admit(_request({'transaction': 'not-a-signature'}))

        self.assertFalse(result.admitted)
        self.assertEqual(result.error, 'verification_failed')
        self.rpc.get_transaction.assert_not_called()


@override_settings(ROOT_URLCONF='core.urls_facilitator', FACILITATOR_MODE='devnet')
class DevnetVerifyViewTests(SimpleTestCase):

    def _post(self, proof):
        body = {'proof': proof, 'payer': 'payer-pubkey', 'amount': 1000}
        return self.client.post(
            reverse('facilitator:verify'), data=json.dumps(body), content_type='application/json')

    @patch('facilitator.admission.solana_devnet.Client')
    def test_confirmed_transaction_mints_devnet_token(self, client_class):
        client_class.return_value.get_transaction.return_value = _rpc_response()

        response = self._post({'transaction': SIGNATURE})

        self.assertEqual(response.status_code, 200)
        token = response.json()['verification']
        self.assertTrue(token.startswith('devnet-sig:'))
        record = self.client.get(reverse('facilitator:verification', args=[token])).json()
        self.assertEqual(record['transaction'], SIGNATURE)

    @patch('facilitator.admission.solana_devnet.Client')
    def test_rpc_failure_is_verification_failed(self, client_class):
        client_class.return_value.get_transaction.side_effect = httpx.ConnectError('rpc down')

        response = self._post({'transaction': SIGNATURE})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {
            'ok': False,
            'error': 'verification_failed',
            'detail': 'Verification error: rpc down',
        })

    @patch('facilitator.admission.solana_devnet.Client')
    def test_unexpected_error_becomes_verification_error(self, client_class):
        client_class.return_value.get_transaction.side_effect = RuntimeError('rpc down')

        response = self._post({'transaction': SIGNATURE})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {
            'ok': False,
            'error': 'verification_error',
            'detail': 'Failed to verify transaction: rpc down',
        })

    def test_missing_signature_rejected(self):
        response = self._post({'stub': True})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'invalid_proof')
