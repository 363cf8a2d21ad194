"""
Solana helpers used by the client in devnet mode.

Only plain SOL transfers are supported; SPL token transfers are rejected with
:class:`~x402sdk.errors.ProofConstructionFailed`.
"""
import base58
from loguru import logger
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Confirmed
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from .errors import ConfigurationError, ProofConstructionFailed

DEFAULT_RPC_URL = 'https://api.devnet.solana.com'
LAMPORTS_PER_SOL = 1_000_000_000


def create_test_keypair() -> Keypair:
    return Keypair()


def load_keypair(secret_key: str) -> Keypair:
    """Load a keypair from a base58-encoded 64-byte secret key."""
    try:
        return Keypair.from_bytes(base58.b58decode(secret_key.strip()))
    except ValueError as exc:
        raise ConfigurationError(f'Invalid Solana secret key: {exc}') from exc


def validate_address(address: str) -> bool:
    try:
        return len(base58.b58decode(address)) == 32
    except ValueError:
        return False


async def create_solana_payment(
    keypair: Keypair,
    recipient: str,
    amount: int,
    currency: str,
    *,
    rpc_url: str = DEFAULT_RPC_URL,
    commitment: Commitment = Confirmed,
) -> str:
    """
    Send ``amount`` lamports from ``keypair`` to ``recipient`` and wait for confirmation.

    Returns the transaction signature as a base58 string.
    """
    if currency.lower() != 'sol':
        raise ProofConstructionFailed(
            f'SPL token transfers not yet implemented for {currency}')
    if not validate_address(recipient):
        raise ProofConstructionFailed(f'Invalid recipient address: {recipient}')

    payer = keypair.pubkey()
    instruction = transfer(
        TransferParams(
            from_pubkey=payer,
            to_pubkey=Pubkey.from_string(recipient),
            lamports=amount,
        )
    )

    async with AsyncClient(rpc_url, commitment=commitment) as client:
        blockhash = (await client.get_latest_blockhash()).value.blockhash
        message = Message.new_with_blockhash([instruction], payer, blockhash)
        transaction = Transaction([keypair], message, blockhash)

        response = await client.send_transaction(transaction)
        signature = response.value
        logger.info('Solana payment submitted: {} lamports to {} ({})',
                    amount, recipient, signature)

        await client.confirm_transaction(signature, commitment=commitment)

    return str(signature)


async def request_airdrop(
    pubkey: Pubkey,
    sol: float = 1,
    *,
    rpc_url: str = DEFAULT_RPC_URL,
) -> str:
    """Request a devnet airdrop and wait until it is confirmed."""
    async with AsyncClient(rpc_url, commitment=Confirmed) as client:
        response = await client.request_airdrop(pubkey, int(sol * LAMPORTS_PER_SOL))
        signature = response.value
        await client.confirm_transaction(signature, commitment=Confirmed)
    logger.info('Airdrop of {} SOL to {} confirmed: {}', sol, pubkey, signature)
    return str(signature)
