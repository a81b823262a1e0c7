"""Turn store purchases and entitlements into ledger changes, exactly once."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from app.config import Settings, get_settings
from app.core.exceptions import AvatarError, PurchaseRejected, PurchaseTransportFailure, PurchaseUnverified
from app.core.scheduling import Clock, utcnow
from app.schemas.billing import (
    Catalog,
    PlatformPurchaseStatus,
    PlatformTransaction,
    Product,
    ProductType,
    PurchaseOutcome,
    PurchaseStatus,
)
from app.services.billing_platform import BillingPlatform
from app.services.ledger_service import LedgerStore

logger = logging.getLogger(__name__)

PRODUCT_NAMES = {
    ProductType.SUBSCRIPTION: "Weekly subscription",
    ProductType.PACK_SMALL: "Small credit pack",
    ProductType.PACK_MEDIUM: "Medium credit pack",
    ProductType.PACK_LARGE: "Large credit pack",
}


class PurchaseReconciler:
    def __init__(
        self,
        platform: BillingPlatform,
        ledger: LedgerStore,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ):
        self._platform = platform
        self._ledger = ledger
        self._settings = settings or get_settings()
        self._clock = clock
        self._catalog: Optional[Catalog] = None
        self._listener: Optional[asyncio.Task] = None
        self.error: Optional[str] = None

    @property
    def catalog(self) -> Optional[Catalog]:
        return self._catalog

    def product_type_for(self, product_id: str) -> Optional[ProductType]:
        s = self._settings
        return {
            s.subscription_product_id: ProductType.SUBSCRIPTION,
            s.pack_small_product_id: ProductType.PACK_SMALL,
            s.pack_medium_product_id: ProductType.PACK_MEDIUM,
            s.pack_large_product_id: ProductType.PACK_LARGE,
        }.get(product_id)

    def product_id_for(self, product_type: ProductType) -> str:
        s = self._settings
        return {
            ProductType.SUBSCRIPTION: s.subscription_product_id,
            ProductType.PACK_SMALL: s.pack_small_product_id,
            ProductType.PACK_MEDIUM: s.pack_medium_product_id,
            ProductType.PACK_LARGE: s.pack_large_product_id,
        }[product_type]

    def credits_for(self, product_type: ProductType) -> int:
        if product_type is ProductType.SUBSCRIPTION:
            return self._settings.subscription_grant_credits
        return self._settings.pack_credits[self.product_id_for(product_type)]

    async def load_catalog(self) -> Optional[Catalog]:
        """Fetch products once. Transport failures set `error` and return None."""
        if self._catalog is not None:
            return self._catalog
        try:
            store_products = await self._platform.fetch_products(self._settings.product_ids)
        except AvatarError as e:
            logger.warning("Catalog load failed: %s", e.message)
            self.error = e.message
            return None
        products = []
        for sp in store_products:
            product_type = self.product_type_for(sp.product_id)
            if product_type is None:
                continue
            products.append(
                Product(
                    product_id=sp.product_id,
                    product_type=product_type,
                    display_name=sp.display_name or PRODUCT_NAMES[product_type],
                    display_price=sp.display_price,
                    credits=self.credits_for(product_type),
                )
            )
        self._catalog = Catalog(products=products)
        self.error = None
        logger.info("Loaded %s store products", len(products))
        return self._catalog

    async def purchase(self, product_type: ProductType) -> PurchaseOutcome:
        """
        Run the store purchase flow. Credit packs need an active subscription.
        Raises PurchaseRejected, PurchaseTransportFailure or PurchaseUnverified.
        """
        account = self._ledger.require_account()
        if product_type.is_pack and not account.subscription_active:
            raise PurchaseRejected("Credit packs are available to subscribers only. Subscribe first.")
        product_id = self.product_id_for(product_type)
        try:
            result = await self._platform.purchase(
                product_id,
                account.identity,
                subscription=product_type is ProductType.SUBSCRIPTION,
            )
        except PurchaseTransportFailure:
            raise
        except AvatarError as e:
            raise PurchaseTransportFailure(e.message) from e

        if result.status is PlatformPurchaseStatus.CANCELLED:
            return PurchaseOutcome(status=PurchaseStatus.CANCELLED)
        if result.status is PlatformPurchaseStatus.PENDING:
            return PurchaseOutcome(
                status=PurchaseStatus.PENDING,
                message="Purchase awaiting validation.",
                redirect_url=result.redirect_url,
            )
        tx = result.transaction
        if tx is None or not tx.verified:
            logger.warning("Unverified purchase of %s for %s", product_id, account.identity)
            raise PurchaseUnverified()
        before = self._ledger.credits
        self.apply_transaction(tx)
        return PurchaseOutcome(
            status=PurchaseStatus.SUCCESS,
            credits=self._ledger.credits - before,
        )

    def apply_transaction(self, tx: PlatformTransaction) -> bool:
        """
        Apply one transaction to the signed-in account; returns True when the
        ledger changed. Packs are keyed on transaction id; the subscription is
        keyed on the inactive->active transition.
        """
        account = self._ledger.account
        if account is None or (tx.account_id and tx.account_id != account.identity):
            self._defer(tx)
            return False
        if not tx.verified:
            logger.warning("Ignoring unverified transaction %s", tx.transaction_id)
            return False
        product_type = self.product_type_for(tx.product_id)
        if product_type is None:
            logger.warning("Unknown product %s in transaction %s", tx.product_id, tx.transaction_id)
            return False

        now = self._clock()
        if product_type is ProductType.SUBSCRIPTION:
            ended = tx.revocation_date is not None or (
                tx.expiration_date is not None and tx.expiration_date <= now
            )
            if ended:
                if account.subscription_active:
                    logger.info("Subscription ended for %s (tx=%s)", account.identity, tx.transaction_id)
                    self._ledger.set_subscription(False)
                return False
            if account.subscription_active:
                return False
            self._ledger.set_subscription(True)
            self._ledger.add_credits(self._settings.subscription_grant_credits)
            self._ledger.set_next_reward(now + timedelta(seconds=self._settings.reward_interval_seconds))
            self._ledger.mark_processed(tx.transaction_id)
            logger.info(
                "Subscription activated for %s: +%s credits",
                account.identity, self._settings.subscription_grant_credits,
            )
            return True

        if tx.transaction_id in self._ledger.processed_transactions():
            return False
        if tx.revocation_date is not None:
            # Refunded pack: record it so a later redelivery cannot grant it.
            self._ledger.mark_processed(tx.transaction_id)
            return False
        amount = self.credits_for(product_type)
        self._ledger.add_credits(amount)
        self._ledger.mark_processed(tx.transaction_id)
        logger.info("Applied %s for %s: +%s credits", tx.product_id, account.identity, amount)
        return True

    async def refresh_subscription_status(self) -> Optional[bool]:
        """
        Recompute the subscription flag from current entitlements. Any revoked
        record wins over other still-current ones. Returns the resulting flag,
        or None when the store could not be asked (the cached flag is kept).
        """
        account = self._ledger.account
        if account is None:
            return False
        try:
            entitlements = await self._platform.current_entitlements(account.identity)
        except AvatarError as e:
            logger.warning("Entitlement refresh failed, keeping cached flag: %s", e.message)
            return None

        now = self._clock()
        current: list[PlatformTransaction] = []
        revoked = False
        for tx in entitlements:
            if self.product_type_for(tx.product_id) is not ProductType.SUBSCRIPTION or not tx.verified:
                continue
            if tx.revocation_date is not None:
                revoked = True
            elif tx.expiration_date is None or tx.expiration_date > now:
                current.append(tx)
        active = bool(current) and not revoked

        # Flag only: the activation grant comes from apply_transaction.
        if active != account.subscription_active:
            self._ledger.set_subscription(active)
            if active and account.next_reward_at is None:
                self._ledger.set_next_reward(now + timedelta(seconds=self._settings.reward_interval_seconds))
            logger.info("Subscription for %s is now %s", account.identity, "active" if active else "inactive")
        return active

    def _defer(self, tx: PlatformTransaction) -> None:
        if not tx.account_id or not tx.verified:
            logger.warning("Dropping transaction %s: unverified or without an owner", tx.transaction_id)
            return
        self._ledger.defer_transaction(tx.account_id, tx)
        logger.info("Deferred transaction %s until %s signs in", tx.transaction_id, tx.account_id)

    def apply_deferred_transactions(self) -> int:
        """Apply transactions that arrived while their owner was signed out."""
        if not self._ledger.signed_in:
            return 0
        applied = 0
        for tx in self._ledger.deferred_transactions():
            if self.apply_transaction(tx):
                applied += 1
        self._ledger.clear_deferred_transactions()
        return applied

    async def sync(self) -> Optional[bool]:
        self.apply_deferred_transactions()
        return await self.refresh_subscription_status()

    def listen_for_transaction_updates(self) -> asyncio.Task:
        """Start the single transaction-stream consumer; later calls return the same task."""
        if self._listener is not None and not self._listener.done():
            return self._listener
        self._listener = asyncio.get_running_loop().create_task(self._consume_updates())
        return self._listener

    async def _consume_updates(self) -> None:
        async for tx in self._platform.transaction_updates():
            try:
                self.apply_transaction(tx)
            except AvatarError as e:
                logger.warning("Transaction %s not applied: %s", tx.transaction_id, e.message)
            except Exception:
                logger.exception("Transaction %s not applied", tx.transaction_id)

    def stop_listening(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            self._listener = None
