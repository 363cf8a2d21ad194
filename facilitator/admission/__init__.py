"""
Admission policies deciding whether a payment proof is accepted.
"""
from .base import AdmissionPolicy, AdmissionResult
from .mock import AlwaysAdmit
from .solana_devnet import SettlementVerifying
from .factory import UnknownModeError, policy_for_mode, supported_modes

__all__ = [
    'AdmissionPolicy',
    'AdmissionResult',
    'AlwaysAdmit',
    'SettlementVerifying',
    'UnknownModeError',
    'policy_for_mode',
    'supported_modes',
]
