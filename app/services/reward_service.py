"""Weekly subscription credits, caught up for every missed period."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from app.config import Settings, get_settings
from app.core.scheduling import Clock, utcnow
from app.services.ledger_service import LedgerStore
from app.services.purchase_service import PurchaseReconciler

logger = logging.getLogger(__name__)


class WeeklyRewardScheduler:
    def __init__(
        self,
        ledger: LedgerStore,
        reconciler: PurchaseReconciler,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ):
        self._ledger = ledger
        self._reconciler = reconciler
        self._settings = settings or get_settings()
        self._clock = clock

    async def check_due(self) -> int:
        """
        Grant every reward period that has come due and move the next reward
        date forward. Returns the credits granted (0 when nothing was due).
        The subscription is re-verified against the store before granting.
        """
        account = self._ledger.account
        if account is None or not account.subscription_active or account.next_reward_at is None:
            return 0
        verified = await self._reconciler.refresh_subscription_status()
        if verified is None:
            logger.info("Skipping weekly reward for %s: subscription could not be verified", account.identity)
            return 0
        if not verified:
            logger.info("Skipping weekly reward for %s: subscription not active", account.identity)
            return 0
        account = self._ledger.account
        if account is None or account.next_reward_at is None:
            return 0

        now = self._clock()
        next_at = account.next_reward_at
        elapsed = (now - next_at).total_seconds()
        if elapsed < 0:
            return 0

        interval = self._settings.reward_interval_seconds
        # Whole periods elapsed, at least one: three intervals late grants three rewards.
        periods = max(1, int(elapsed // interval))
        amount = self._settings.weekly_reward_credits * periods
        self._ledger.add_credits(amount)
        try:
            new_next = next_at + timedelta(seconds=interval * (periods + 1))
        except OverflowError:
            new_next = now + timedelta(seconds=interval)
        self._ledger.set_next_reward(new_next)
        logger.info(
            "Granted %s weekly credits to %s for %s period(s); next reward at %s",
            amount, account.identity, periods, new_next.isoformat(),
        )
        return amount
