"""
Mode registry: maps ``FACILITATOR_MODE`` values to admission policies.
"""
from typing import Any, Dict, List, Optional, Type

from .base import AdmissionPolicy
from .mock import AlwaysAdmit
from .solana_devnet import SettlementVerifying

POLICIES_BY_MODE: Dict[str, Type[AdmissionPolicy]] = {
    'mock': AlwaysAdmit,
    'devnet': SettlementVerifying,
}


class UnknownModeError(ValueError):

    def __init__(self, mode: str):
        super().__init__(
            f"No admission policy for mode {mode!r} (known: {', '.join(supported_modes())})")
        self.mode = mode


def supported_modes() -> List[str]:
    return list(POLICIES_BY_MODE)


def policy_for_mode(mode: str, config: Optional[Dict[str, Any]] = None) -> AdmissionPolicy:
    """Build the policy registered for ``mode``; case and surrounding blanks are ignored."""
    policy_class = POLICIES_BY_MODE.get(mode.lower().strip())
    if policy_class is None:
        raise UnknownModeError(mode)
    return policy_class(config or {})
