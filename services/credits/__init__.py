"""
Credits

Credit gating and the cached balance consumed by the generation flow.
Payment processing lives elsewhere.
"""

from .balance import CreditBalance
from .gate import (
    Allowed,
    CreditCheck,
    Decision,
    Denied,
    DenialReason,
    User,
    authorize,
)

__all__ = [
    "CreditBalance",
    "Allowed",
    "CreditCheck",
    "Decision",
    "Denied",
    "DenialReason",
    "User",
    "authorize",
]
