"""Shared fixtures: in-memory store, fake clock/scheduler, fake webhook client and store."""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from app.config import Settings
from app.core.exceptions import PurchaseTransportFailure, SubmissionTransportFailure
from app.core.kv_store import MemoryKeyValueStore
from app.core.scheduling import Callback, TimerHandle
from app.schemas.billing import PlatformPurchaseResult, PlatformTransaction, StoreProduct
from app.schemas.generation import StatusResponse, SubmissionPayload
from app.services.generation_service import PENDING_JOB_KEY, JobCoordinator
from app.services.ledger_service import LedgerStore
from app.services.purchase_service import PurchaseReconciler
from app.services.reward_service import WeeklyRewardScheduler

START = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@dataclass
class _Timer:
    due: datetime
    interval: Optional[float]
    callback: Callback
    handle: TimerHandle


class ManualScheduler:
    """Timers fire only when a test advances time."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self._timers: list[_Timer] = []

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        handle = TimerHandle()
        self._timers.append(_Timer(self.clock() + timedelta(seconds=delay), None, callback, handle))
        return handle

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        handle = TimerHandle()
        self._timers.append(_Timer(self.clock() + timedelta(seconds=interval), interval, callback, handle))
        return handle

    @property
    def live(self) -> list[_Timer]:
        return [t for t in self._timers if not t.handle.cancelled]

    async def advance(self, seconds: float) -> None:
        target = self.clock() + timedelta(seconds=seconds)
        while True:
            due = [t for t in self.live if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.clock.now = max(self.clock.now, timer.due)
            if timer.interval is None:
                self._timers.remove(timer)
            else:
                timer.due += timedelta(seconds=timer.interval)
            await timer.callback()
        self.clock.now = target
        self._timers = self.live


class FakeGenerationClient:
    def __init__(self, store: Optional[MemoryKeyValueStore] = None):
        self.store = store
        self.submitted: list[SubmissionPayload] = []
        self.status_calls: list[str] = []
        self.next_status: Optional[StatusResponse] = None
        self.fail_submit = False
        self.pending_at_submit = None
        self.gate: Optional[asyncio.Event] = None

    async def submit(self, payload: SubmissionPayload) -> None:
        if self.store is not None:
            self.pending_at_submit = self.store.get_json(PENDING_JOB_KEY)
        if self.fail_submit:
            raise SubmissionTransportFailure()
        self.submitted.append(payload)

    async def check_status(self, job_id: str) -> Optional[StatusResponse]:
        self.status_calls.append(job_id)
        if self.gate is not None:
            await self.gate.wait()
        return self.next_status

    async def aclose(self) -> None:
        pass


class FakeBillingPlatform:
    def __init__(self, products: list[StoreProduct]):
        self.products = products
        self.entitlements: list[PlatformTransaction] = []
        self.purchase_result: Optional[PlatformPurchaseResult] = None
        self.purchases: list[tuple[str, str, bool]] = []
        self.fail_fetch = False
        self.fail_entitlements = False
        self.fetch_calls = 0
        self.queue: asyncio.Queue = asyncio.Queue()

    async def fetch_products(self, product_ids: list[str]) -> list[StoreProduct]:
        self.fetch_calls += 1
        if self.fail_fetch:
            raise PurchaseTransportFailure()
        return [p for p in self.products if p.product_id in product_ids]

    async def purchase(self, product_id: str, account_id: str, subscription: bool = False):
        self.purchases.append((product_id, account_id, subscription))
        return self.purchase_result

    async def current_entitlements(self, account_id: str) -> list[PlatformTransaction]:
        if self.fail_entitlements:
            raise PurchaseTransportFailure()
        return list(self.entitlements)

    async def transaction_updates(self):
        while True:
            yield await self.queue.get()


@pytest.fixture
def settings():
    return Settings(_env_file=None, stripe_secret_key="", stripe_webhook_secret="")


@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture
def ledger(store, settings):
    return LedgerStore(store, settings)


@pytest.fixture
def signed_in(ledger):
    ledger.sign_in("user-1", "user1@example.com")
    return ledger


@pytest.fixture
def gen_client(store):
    return FakeGenerationClient(store)


@pytest.fixture
def platform(settings):
    return FakeBillingPlatform(
        [
            StoreProduct(product_id=settings.subscription_product_id, display_name="Weekly", display_price="9.99 EUR"),
            StoreProduct(product_id=settings.pack_small_product_id, display_name="Small", display_price="4.99 EUR"),
            StoreProduct(product_id=settings.pack_medium_product_id, display_name="Medium", display_price="9.99 EUR"),
            StoreProduct(product_id=settings.pack_large_product_id, display_name="Large", display_price="19.99 EUR"),
        ]
    )


@pytest.fixture
def reconciler(platform, ledger, settings, clock):
    return PurchaseReconciler(platform, ledger, settings, clock=clock)


@pytest.fixture
def rewards(ledger, reconciler, settings, clock):
    return WeeklyRewardScheduler(ledger, reconciler, settings, clock=clock)


@pytest.fixture
def coordinator(ledger, gen_client, store, scheduler, settings, clock):
    ids = iter(f"job-{i}" for i in range(1, 100))
    return JobCoordinator(
        ledger,
        gen_client,
        store,
        scheduler,
        settings,
        clock=clock,
        job_id_factory=lambda: next(ids),
    )
