import asyncio
import json
from typing import Optional

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from loguru import logger

from x402sdk import X402Client, X402Error, create_test_keypair, load_keypair, request_airdrop
from x402sdk.client import MODE_DEVNET, MODE_MOCK


async def run_autopay(url: str, prompt: str, airdrop_sol: Optional[float] = None, **client_options):
    keypair = client_options.get('keypair')
    if airdrop_sol and keypair is not None:
        await request_airdrop(keypair.pubkey(), airdrop_sol, rpc_url=client_options['solana_rpc_url'])
    async with X402Client(**client_options) as client:
        return await client.request_with_auto_pay('POST', url, json={'prompt': prompt})


class Command(BaseCommand):
    help = 'Call a protected endpoint, paying for it automatically.'

    def add_arguments(self, parser):
        parser.add_argument('url', nargs='?',
                            default=f'http://localhost:{settings.SELLER_PORT}/inference')
        parser.add_argument('--prompt', default='Hello, world')
        parser.add_argument('--mode', choices=[MODE_MOCK, MODE_DEVNET], default=MODE_MOCK)
        parser.add_argument('--facilitator-url', default=None)
        parser.add_argument('--secret-key', default=None,
                            help='base58 secret key; devnet mode generates a throwaway key without it')
        parser.add_argument('--airdrop', type=float, default=None,
                            help='SOL to airdrop to the payer before paying (devnet only)')

    def handle(self, *args, **options):
        client_options = {
            'mode': options['mode'],
            'facilitator_url': options['facilitator_url'],
            'solana_rpc_url': settings.SOLANA_RPC_URL,
        }
        try:
            if options['secret_key']:
                client_options['keypair'] = load_keypair(options['secret_key'])
            elif options['mode'] == MODE_DEVNET:
                client_options['keypair'] = create_test_keypair()
                logger.info('generated payer keypair {}', client_options['keypair'].pubkey())
            response = asyncio.run(run_autopay(
                options['url'], options['prompt'], options['airdrop'], **client_options))
        except X402Error as exc:
            raise CommandError(exc.message) from exc

        self.stdout.write(f'{response.status_code}')
        try:
            self.stdout.write(json.dumps(response.json(), indent=2))
        except ValueError:
            self.stdout.write(response.text)
