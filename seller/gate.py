"""
Payment gate of the resource server.

The gate issues payment requirements, decides whether a presented token
unlocks the protected action, and runs that action.
"""
import enum
from typing import Any, Dict, Optional, Protocol

from loguru import logger

from x402sdk.tokens import has_accepted_prefix
from x402sdk.types import PaymentRequirement, isoformat_z, utc_now

from seller.config import SellerConfig

MODEL_NAME = 'mock-model-v1'


class AcceptDecision(enum.Enum):
    ACCEPT = 'accept'
    REJECT = 'reject'


class TokenLookup(Protocol):
    def is_known(self, token: str) -> bool:
        ...


class PaymentGate:

    def __init__(self, config: SellerConfig, lookup: Optional[TokenLookup] = None):
        self.config = config
        self.lookup = lookup

    def issue_requirement(self) -> PaymentRequirement:
        return PaymentRequirement.issue(
            product_id=self.config.product_id,
            amount=self.config.amount,
            currency=self.config.currency,
            chain=self.config.chain,
            verifier_endpoint=self.config.facilitator_url,
            ttl_seconds=self.config.requirement_ttl_seconds,
            recipient=self.config.wallet_address,
        )

    def accept_token(self, token: Optional[str]) -> AcceptDecision:
        """
        Decide on a presented ``X-PAYMENT`` value.

        Blank tokens and tokens without an accepted prefix are rejected. With
        a lookup configured, the verifier must also know the token.
        """
        if token is None or not has_accepted_prefix(token, self.config.accepted_token_prefixes):
            return AcceptDecision.REJECT
        if self.lookup is not None and not self.lookup.is_known(token):
            logger.info('token {} unknown to the verifier', token)
            return AcceptDecision.REJECT
        return AcceptDecision.ACCEPT

    def serve(self, body: Any) -> Dict[str, Any]:
        prompt = body.get('prompt') if isinstance(body, dict) else None
        if prompt is None:
            prompt = ''
        return {
            'result': f'Processed inference for: "{prompt}"',
            'model': MODEL_NAME,
            'cost_charged': self.config.amount,
            'timestamp': isoformat_z(utc_now()),
        }
