"""Wires ledger, reconciler, rewards and the job coordinator for one process."""

from __future__ import annotations

import logging
from typing import Optional

from app.config import Settings, get_settings
from app.core.kv_store import KeyValueStore, build_kv_store
from app.core.scheduling import AsyncioScheduler, Clock, Scheduler, utcnow
from app.schemas.account import AccountSnapshot
from app.services.billing_platform import BillingPlatform, StripeBillingPlatform
from app.services.generation_client import GenerationClient
from app.services.generation_service import JobCoordinator
from app.services.ledger_service import LedgerStore
from app.services.purchase_service import PurchaseReconciler
from app.services.reward_service import WeeklyRewardScheduler

logger = logging.getLogger(__name__)


class AvatarSession:
    """
    The single writer for account and job state. Everything runs on the event
    loop that calls start(); HTTP handlers only call into it.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[KeyValueStore] = None,
        client: Optional[GenerationClient] = None,
        platform: Optional[BillingPlatform] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Clock = utcnow,
    ):
        self.settings = settings or get_settings()
        self.store = store if store is not None else build_kv_store(self.settings)
        self.client = client or GenerationClient(self.settings)
        self.platform = platform or StripeBillingPlatform(self.settings)
        self.ledger = LedgerStore(self.store, self.settings)
        self.reconciler = PurchaseReconciler(self.platform, self.ledger, self.settings, clock=clock)
        self.rewards = WeeklyRewardScheduler(self.ledger, self.reconciler, self.settings, clock=clock)
        self.coordinator = JobCoordinator(
            self.ledger,
            self.client,
            self.store,
            scheduler or AsyncioScheduler(),
            self.settings,
            clock=clock,
        )

    async def start(self) -> None:
        """Launch sequence: restore, resume the pending job, then store sync."""
        self.ledger.restore()
        await self.coordinator.resume()
        await self.reconciler.load_catalog()
        self.reconciler.listen_for_transaction_updates()
        await self.sync()

    async def sync(self) -> int:
        """Foreground sync: entitlements first, then reward catch-up. Returns credits granted."""
        if not self.ledger.signed_in:
            return 0
        await self.reconciler.sync()
        return await self.rewards.check_due()

    async def sign_in(self, identity: str, email: Optional[str] = None) -> AccountSnapshot:
        self.ledger.sign_in(identity, email)
        await self.coordinator.resume()
        await self.sync()
        return self.ledger.require_account()

    def sign_out(self) -> None:
        self.coordinator.suspend()
        self.ledger.sign_out()

    async def switch_account(self, identity: str) -> AccountSnapshot:
        self.coordinator.suspend()
        self.ledger.switch_account(identity)
        await self.coordinator.resume()
        await self.sync()
        return self.ledger.require_account()

    def delete_account(self) -> None:
        self.coordinator.suspend()
        self.ledger.delete_account()

    async def stop(self) -> None:
        self.coordinator.shutdown()
        self.reconciler.stop_listening()
        await self.client.aclose()
