"""
Credit Gate

Decides whether a user may start a paid action. Pure: the balance is
supplied by the caller and nothing here touches the network.

Usage:
    decision = authorize(user, required_credits=3, balance=credits.balance)
    if isinstance(decision, Denied):
        show_insufficient_credits(decision.deficit)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union


class DenialReason(str, Enum):
    """Why an action was denied."""
    UNAUTHENTICATED = "unauthenticated"
    INSUFFICIENT_CREDITS = "insufficient_credits"


@dataclass(frozen=True)
class User:
    """Signed-in user as yielded by the authentication provider."""
    id: str
    email: Optional[str] = None


@dataclass(frozen=True)
class CreditCheck:
    """Snapshot used for the insufficient-credits display."""
    required_credits: int
    current_balance: int

    @property
    def deficit(self) -> int:
        return max(0, self.required_credits - self.current_balance)


@dataclass(frozen=True)
class Allowed:
    check: CreditCheck


@dataclass(frozen=True)
class Denied:
    reason: DenialReason
    deficit: int = 0
    check: Optional[CreditCheck] = None


Decision = Union[Allowed, Denied]


def authorize(user: Optional[Any], required_credits: int, balance: int) -> Decision:
    """
    Check that a user can pay for an action.

    Args:
        user: Current user, or None when signed out
        required_credits: Cost of the action
        balance: The user's current credit balance

    Returns:
        Allowed, or Denied carrying the reason and a non-negative deficit
    """
    if user is None:
        return Denied(reason=DenialReason.UNAUTHENTICATED)

    check = CreditCheck(required_credits=required_credits, current_balance=balance)
    if required_credits > balance:
        return Denied(
            reason=DenialReason.INSUFFICIENT_CREDITS,
            deficit=check.deficit,
            check=check,
        )
    return Allowed(check=check)
