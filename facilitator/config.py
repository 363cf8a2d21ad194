from dataclasses import dataclass
from typing import Any, Dict

from django.conf import settings


@dataclass(frozen=True)
class FacilitatorConfig:
    mode: str
    port: int
    solana_rpc_url: str
    rpc_timeout_seconds: float
    enforce_requirement_expiry: bool

    @classmethod
    def from_settings(cls) -> 'FacilitatorConfig':
        return cls(
            mode=settings.FACILITATOR_MODE,
            port=settings.FACILITATOR_PORT,
            solana_rpc_url=settings.SOLANA_RPC_URL,
            rpc_timeout_seconds=settings.SOLANA_RPC_TIMEOUT_SECONDS,
            enforce_requirement_expiry=settings.X402_ENFORCE_REQUIREMENT_EXPIRY,
        )

    def policy_config(self) -> Dict[str, Any]:
        """Configuration handed to the admission policy for ``mode``."""
        return {
            'rpc_url': self.solana_rpc_url,
            'rpc_timeout_seconds': self.rpc_timeout_seconds,
        }
