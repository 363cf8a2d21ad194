"""
Verification token format.

A token is ``<mode-prefix><16 hex chars>``, e.g. ``mock-sig:2ae543fa8192d9a4``.
The prefix is the only thing the resource server looks at in its default
(syntactic) mode.
"""
import secrets
from typing import Iterable

MOCK_TOKEN_PREFIX = 'mock-sig:'
DEVNET_TOKEN_PREFIX = 'devnet-sig:'

DEFAULT_ACCEPTED_PREFIXES = (MOCK_TOKEN_PREFIX, DEVNET_TOKEN_PREFIX)

# 8 random bytes, hex encoded.
TOKEN_ENTROPY_BYTES = 8


def mint_token(prefix: str) -> str:
    return f'{prefix}{secrets.token_hex(TOKEN_ENTROPY_BYTES)}'


def has_accepted_prefix(token: str, prefixes: Iterable[str]) -> bool:
    """Return True if ``token`` is non-blank and starts with one of ``prefixes``."""
    if not token or not token.strip():
        return False
    return any(token.startswith(prefix) for prefix in prefixes)
