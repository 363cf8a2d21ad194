from functools import lru_cache

from django.core.signals import setting_changed

from seller.config import SellerConfig
from seller.gate import PaymentGate
from seller.lookup import RemoteTokenLookup

RESET_ON = {
    'SELLER_PORT',
    'FACILITATOR_URL',
    'PRODUCT_ID',
    'PRODUCT_AMOUNT',
    'PRODUCT_CURRENCY',
    'PRODUCT_CHAIN',
    'X402_REQUIREMENT_TTL_SECONDS',
    'X402_ACCEPTED_TOKEN_PREFIXES',
    'X402_SELLER_VERIFY_TOKENS',
    'X402_SELLER_LOOKUP_TIMEOUT_SECONDS',
    'SELLER_WALLET_ADDRESS',
}


@lru_cache(maxsize=None)
def get_gate() -> PaymentGate:
    config = SellerConfig.from_settings()
    lookup = None
    if config.verify_tokens:
        lookup = RemoteTokenLookup(config.verifier_base_url, timeout=config.lookup_timeout_seconds)
    return PaymentGate(config, lookup)


def reset_gate(*, setting: str, **kwargs) -> None:
    if setting in RESET_ON:
        get_gate.cache_clear()


def connect_signals() -> None:
    setting_changed.connect(reset_gate, dispatch_uid='seller.reset_gate')
