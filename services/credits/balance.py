"""
Credit balance provider.

Caches the user's balance and refreshes it on demand. Refreshes requested
while one is already in flight share that fetch instead of issuing another.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class CreditBalance:
    """
    Cached credit balance with coalesced refresh.

    Usage:
        credits = CreditBalance(client.fetch_balance)
        await credits.refresh()
        if credits.has_enough_credits(3):
            ...
    """

    def __init__(
        self,
        fetch_balance: Callable[[], Awaitable[int]],
        initial_balance: int = 0,
    ):
        self._fetch_balance = fetch_balance
        self.balance = initial_balance
        self.error: Optional[str] = None
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def loading(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    def has_enough_credits(self, cost: int) -> bool:
        return self.balance >= cost

    async def refresh(self) -> int:
        """Fetch the current balance, joining a refresh already in flight."""
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._do_refresh())
        return await asyncio.shield(self._refresh_task)

    def request_refresh(self) -> asyncio.Task:
        """Start a refresh without waiting for it."""
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._do_refresh())
        return self._refresh_task

    async def _do_refresh(self) -> int:
        try:
            balance = await self._fetch_balance()
        except Exception as e:
            self.error = f"{type(e).__name__}: {e}"
            logger.error(f"Credit balance refresh failed: {self.error}")
            return self.balance

        self.balance = balance
        self.error = None
        logger.info(f"Credit balance refreshed: {balance}")
        return balance
