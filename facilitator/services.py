from functools import lru_cache

from django.core.signals import setting_changed
from loguru import logger

from facilitator.config import FacilitatorConfig
from facilitator.verifier import Verifier

RESET_ON = {
    'FACILITATOR_MODE',
    'SOLANA_RPC_URL',
    'SOLANA_RPC_TIMEOUT_SECONDS',
    'X402_ENFORCE_REQUIREMENT_EXPIRY',
}


@lru_cache(maxsize=None)
def get_verifier() -> Verifier:
    """Process-wide verifier; its store holds every token minted by this process."""
    config = FacilitatorConfig.from_settings()
    logger.info('facilitator starting in {} mode', config.mode)
    return Verifier.from_config(config)


def reset_verifier(*, setting: str, **kwargs) -> None:
    if setting in RESET_ON:
        get_verifier.cache_clear()


def connect_signals() -> None:
    setting_changed.connect(reset_verifier, dispatch_uid='facilitator.reset_verifier')
