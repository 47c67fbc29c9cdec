"""Credit costs and an in-memory credit ledger"""

import asyncio
import logging
import re
from typing import Optional

from config import settings
from core.enums import ModelType
from core.interfaces import BillingService
from core.models import CreditCheck
from llm.models import get_model_type

logger = logging.getLogger(__name__)

INSUFFICIENT_CREDITS_PATTERN = re.compile(r"You need (\d+) credits but only have (\d+)")


def credit_cost(model: str) -> int:
    """Credits charged for one generation on `model`"""
    model_id = model or ""
    model_type = get_model_type(model_id)

    if model_type == ModelType.TEXT:
        return 2 if ("gpt-4o" in model_id or "gemini-1.5-pro" in model_id) else 1
    if model_type == ModelType.IMAGE:
        return 5 if ("dall-e-3" in model_id or "imagen-3" in model_id) else 3
    if model_type == ModelType.VIDEO:
        return 20
    if model_type == ModelType.AUDIO:
        return 3 if "hd" in model_id else 2
    return 1


def insufficient_credits_message(needed: int, available: int) -> str:
    return (
        f"Insufficient credits. You need {needed} credits but only have {available}. "
        "Please upgrade your subscription."
    )


def parse_insufficient_credits(message: str) -> Optional[tuple[int, int]]:
    """Extract (needed, available) from a billing error message"""
    match = INSUFFICIENT_CREDITS_PATTERN.search(message or "")
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


class CreditLedger(BillingService):
    """Per-user balances kept in memory"""

    def __init__(self, balances: dict[str, int] = None, default_credits: int = None):
        self.balances: dict[str, int] = dict(balances or {})
        self.default_credits = settings.DEFAULT_CREDITS if default_credits is None else default_credits
        self._lock = asyncio.Lock()

    def balance(self, user_id: str) -> int:
        return self.balances.get(user_id, self.default_credits)

    def grant(self, user_id: str, amount: int) -> int:
        self.balances[user_id] = self.balance(user_id) + amount
        return self.balances[user_id]

    async def check_and_deduct_credits(self, user_id: str, cost: int) -> CreditCheck:
        async with self._lock:
            current = self.balance(user_id)
            if current < cost:
                logger.info(f"User {user_id} has {current} credits, needs {cost}")
                return CreditCheck(
                    success=False,
                    remaining=current,
                    error=insufficient_credits_message(cost, current),
                )
            self.balances[user_id] = current - cost
            return CreditCheck(success=True, remaining=current - cost)
