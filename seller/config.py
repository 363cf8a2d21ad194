from dataclasses import dataclass
from typing import Tuple

from django.conf import settings


@dataclass(frozen=True)
class SellerConfig:
    port: int
    facilitator_url: str
    product_id: str
    amount: int
    currency: str
    chain: str
    requirement_ttl_seconds: int
    accepted_token_prefixes: Tuple[str, ...]
    verify_tokens: bool = False
    wallet_address: str = ''
    lookup_timeout_seconds: float = 5.0

    @classmethod
    def from_settings(cls) -> 'SellerConfig':
        return cls(
            port=settings.SELLER_PORT,
            facilitator_url=settings.FACILITATOR_URL,
            product_id=settings.PRODUCT_ID,
            amount=settings.PRODUCT_AMOUNT,
            currency=settings.PRODUCT_CURRENCY,
            chain=settings.PRODUCT_CHAIN,
            requirement_ttl_seconds=settings.X402_REQUIREMENT_TTL_SECONDS,
            accepted_token_prefixes=tuple(settings.X402_ACCEPTED_TOKEN_PREFIXES),
            verify_tokens=settings.X402_SELLER_VERIFY_TOKENS,
            wallet_address=settings.SELLER_WALLET_ADDRESS,
            lookup_timeout_seconds=settings.X402_SELLER_LOOKUP_TIMEOUT_SECONDS,
        )

    @property
    def verifier_base_url(self) -> str:
        """The verifier's root URL, derived from its ``/verify`` endpoint."""
        url = self.facilitator_url.rstrip('/')
        if url.endswith('/verify'):
            url = url[:-len('/verify')]
        return url
