from io import StringIO
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
from django.core.management import CommandError, call_command
from django.test import SimpleTestCase, override_settings
from solders.keypair import Keypair

from x402sdk import VerificationFailed, X402Client

from core.management.commands.autopay import run_autopay
from core.management.commands.runnetwork import build_process_specs
from core.services import default_facilitator_url
from facilitator.services import get_verifier


class DjangoTransport:
    """Routes httpx requests into the Django test client."""

    def __init__(self, async_client):
        self.async_client = async_client
        self.exchanges = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        headers = {}
        if 'x-payment' in request.headers:
            headers['X-PAYMENT'] = request.headers['x-payment']
        response = await self.async_client.generic(
            request.method,
            request.url.raw_path.decode(),
            data=request.content,
            content_type=request.headers.get('content-type', 'application/json'),
            headers=headers,
        )
        self.exchanges.append((request, response))
        return httpx.Response(
            response.status_code,
            content=response.content,
            headers={'content-type': response['Content-Type']},
        )

    def client(self, **options) -> X402Client:
        http_client = httpx.AsyncClient(
            base_url='http://testserver', transport=httpx.MockTransport(self.handler))
        return X402Client(http_client=http_client, **options)


@override_settings(
    ROOT_URLCONF='core.urls',
    X402_SERVICE='all',
    FACILITATOR_URL='http://testserver/facilitator/verify',
    FACILITATOR_MODE='mock',
    PRODUCT_AMOUNT=1000,
    PRODUCT_CURRENCY='USDC',
    X402_ACCEPTED_TOKEN_PREFIXES=['mock-sig:', 'devnet-sig:'],
    X402_SELLER_VERIFY_TOKENS=False,
    X402_ENFORCE_REQUIREMENT_EXPIRY=False,
)
class PaymentFlowTests(SimpleTestCase):

    async def test_hello_world_handshake(self):
        transport = DjangoTransport(self.async_client)

        async with transport.client(payer_identity='mock-wallet-e2e0001') as client:
            response = await client.request_with_auto_pay(
                'POST', 'http://testserver/inference', json={'prompt': 'Hello, world'})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['result'], 'Processed inference for: "Hello, world"')
        self.assertEqual(body['model'], 'mock-model-v1')
        self.assertEqual(body['cost_charged'], 1000)

        statuses = [django_response.status_code for _, django_response in transport.exchanges]
        self.assertEqual(statuses, [402, 200, 200])

        requirement = transport.exchanges[0][1].json()['payment_requirements']
        self.assertEqual(requirement['facilitator'], 'http://testserver/facilitator/verify')
        self.assertEqual(requirement['amount'], 1000)
        self.assertEqual(requirement['currency'], 'USDC')

        token = transport.exchanges[1][1].json()['verification']
        self.assertRegex(token, r'^mock-sig:[0-9a-f]{16}$')
        self.assertEqual(transport.exchanges[2][0].headers['x-payment'], token)

        records = get_verifier().store.by_request(requirement['id'])
        self.assertEqual([record.token for record in records], [token])
        self.assertEqual(records[0].payer, 'mock-wallet-e2e0001')

    async def test_health_endpoints_in_combined_mode(self):
        seller = await self.async_client.get('/health')
        facilitator = await self.async_client.get('/facilitator/health')

        self.assertEqual(seller.json()['service'], 'mock-seller')
        self.assertEqual(facilitator.json()['service'], 'mock-facilitator')

    @override_settings(FACILITATOR_MODE='mainnet')
    async def test_unsupported_mode_aborts_handshake(self):
        transport = DjangoTransport(self.async_client)
        client = transport.client()

        with self.assertRaises(VerificationFailed) as ctx:
            await client.request_with_auto_pay('POST', 'http://testserver/inference', json={})

        self.assertEqual(ctx.exception.code, 'unsupported_mode')
        self.assertEqual(len(transport.exchanges), 2)

    def test_home_lists_mounted_services(self):
        body = self.client.get('/').json()

        self.assertEqual(body['service'], 'all')
        self.assertEqual(body['endpoints']['facilitator']['verify'], 'POST /facilitator/verify')
        self.assertIn('seller', body['endpoints'])


class RunNetworkTests(SimpleTestCase):

    def test_build_process_specs(self):
        specs = build_process_specs(3, 4000, 5000, base_env={'PATH': '/bin'})

        self.assertEqual([spec.name for spec in specs], ['facilitator', 'seller-1', 'seller-2', 'seller-3'])
        self.assertEqual([spec.port for spec in specs], [5000, 4000, 4001, 4002])
        self.assertEqual(specs[0].env['X402_SERVICE'], 'facilitator')
        self.assertEqual(specs[0].env['FACILITATOR_PORT'], '5000')
        for spec in specs[1:]:
            self.assertEqual(spec.env['X402_SERVICE'], 'seller')
            self.assertEqual(spec.env['SELLER_PORT'], str(spec.port))
            self.assertEqual(spec.env['FACILITATOR_URL'], 'http://localhost:5000/verify')
            self.assertEqual(spec.env['PATH'], '/bin')
        self.assertEqual(specs[1].command()[-3:], ['runserver', '--noreload', '127.0.0.1:4000'])

    def test_port_collision_rejected(self):
        with self.assertRaises(ValueError):
            build_process_specs(3, 4998, 5000, base_env={})

    @patch('core.management.commands.runnetwork.signal')
    @patch('core.management.commands.runnetwork.time')
    @patch('core.management.commands.runnetwork.subprocess.Popen')
    def test_command_starts_and_stops_processes(self, popen, time_module, signal_module):
        proc = MagicMock()
        proc.poll.return_value = 1
        popen.return_value = proc
        out = StringIO()

        call_command('runnetwork', '--sellers', '2', '--base-port', '4100',
                     '--facilitator-port', '5100', stdout=out)

        self.assertEqual(popen.call_count, 3)
        envs = [call.kwargs['env'] for call in popen.call_args_list]
        self.assertEqual([env['X402_SERVICE'] for env in envs], ['facilitator', 'seller', 'seller'])
        self.assertIn('Network ready', out.getvalue())
        proc.terminate.assert_not_called()

    def test_command_rejects_port_collision(self):
        with self.assertRaises(CommandError):
            call_command('runnetwork', '--sellers', '2', '--base-port', '5000',
                         '--facilitator-port', '5001')


class AutopayCommandTests(SimpleTestCase):

    @patch('core.management.commands.autopay.run_autopay', new_callable=AsyncMock)
    def test_prints_response(self, run_autopay):
        run_autopay.return_value = httpx.Response(200, json={'result': 'Processed inference for: "hi"'})
        out = StringIO()

        call_command('autopay', 'http://localhost:4000/inference', '--prompt', 'hi', stdout=out)

        self.assertIn('200', out.getvalue())
        self.assertIn('Processed inference for', out.getvalue())
        args, kwargs = run_autopay.call_args
        self.assertEqual(args, ('http://localhost:4000/inference', 'hi', None))
        self.assertEqual(kwargs['mode'], 'mock')
        self.assertNotIn('keypair', kwargs)

    @patch('core.management.commands.autopay.run_autopay', new_callable=AsyncMock)
    def test_devnet_mode_generates_keypair(self, run_autopay):
        run_autopay.return_value = httpx.Response(200, json={})

        call_command('autopay', '--mode', 'devnet', '--airdrop', '0.5', stdout=StringIO())

        args, kwargs = run_autopay.call_args
        self.assertEqual(args[2], 0.5)
        self.assertIsInstance(kwargs['keypair'], Keypair)

    @patch('core.management.commands.autopay.request_airdrop', new_callable=AsyncMock)
    async def test_run_autopay_airdrops_before_paying(self, airdrop):
        keypair = Keypair()
        client = MagicMock()
        client.__aenter__ = AsyncMock(return_value=client)
        client.__aexit__ = AsyncMock(return_value=None)
        client.request_with_auto_pay = AsyncMock(return_value=httpx.Response(200))

        with patch('core.management.commands.autopay.X402Client', return_value=client) as client_class:
            response = await run_autopay(
                'http://seller.test/inference', 'hi', 1.0,
                mode='devnet', keypair=keypair, solana_rpc_url='http://rpc.test')

        self.assertEqual(response.status_code, 200)
        airdrop.assert_awaited_once_with(keypair.pubkey(), 1.0, rpc_url='http://rpc.test')
        self.assertEqual(client_class.call_args.kwargs['keypair'], keypair)
        client.request_with_auto_pay.assert_awaited_once_with(
            'POST', 'http://seller.test/inference', json={'prompt': 'hi'})

    @patch('core.management.commands.autopay.run_autopay', new_callable=AsyncMock)
    def test_handshake_errors_become_command_errors(self, run_autopay):
        run_autopay.side_effect = VerificationFailed('invalid_proof', 'no signature')

        with self.assertRaises(CommandError) as ctx:
            call_command('autopay', 'http://localhost:4000/inference')

        self.assertEqual(str(ctx.exception), 'Payment verification failed: invalid_proof')


class DefaultFacilitatorUrlTests(SimpleTestCase):

    def test_combined_process_points_at_mounted_verifier(self):
        self.assertEqual(default_facilitator_url('all', 4000, 5000),
                         'http://localhost:4000/facilitator/verify')

    def test_split_services_point_at_verifier_port(self):
        for service in ('seller', 'facilitator'):
            with self.subTest(service=service):
                self.assertEqual(default_facilitator_url(service, 4000, 5000),
                                 'http://localhost:5000/verify')
