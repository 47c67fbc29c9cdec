"""Credit accounting"""

from .credits import (
    CreditLedger,
    credit_cost,
    insufficient_credits_message,
    parse_insufficient_credits,
)

__all__ = [
    "CreditLedger",
    "credit_cost",
    "insufficient_credits_message",
    "parse_insufficient_credits",
]
