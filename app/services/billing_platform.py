"""Store collaborator: catalog, purchases, entitlements and the transaction stream (Stripe)."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional, Protocol

import stripe

from app.config import Settings, get_settings
from app.core.exceptions import PurchaseTransportFailure
from app.schemas.billing import (
    PlatformPurchaseResult,
    PlatformPurchaseStatus,
    PlatformTransaction,
    StoreProduct,
)

logger = logging.getLogger(__name__)

ACTIVE_SUBSCRIPTION_STATUSES = ("active", "trialing", "past_due")


class BillingPlatform(Protocol):
    async def fetch_products(self, product_ids: list[str]) -> list[StoreProduct]: ...

    async def purchase(
        self, product_id: str, account_id: str, subscription: bool = False
    ) -> PlatformPurchaseResult: ...

    async def current_entitlements(self, account_id: str) -> list[PlatformTransaction]: ...

    def transaction_updates(self) -> AsyncIterator[PlatformTransaction]: ...


def _ts(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def transaction_from_subscription(sub: Any, verified: bool = True) -> Optional[PlatformTransaction]:
    """
    Map a Stripe subscription to an entitlement record.
    A disputed payment counts as a revocation; any other end is an expiration.
    """
    metadata = sub.get("metadata") or {}
    product_id = metadata.get("product_id")
    if not product_id:
        return None
    status = sub.get("status")
    revocation_date = None
    expiration_date = None
    details = sub.get("cancellation_details") or {}
    if details.get("reason") == "payment_disputed":
        revocation_date = _ts(sub.get("canceled_at")) or _ts(sub.get("ended_at"))
    if status in ACTIVE_SUBSCRIPTION_STATUSES:
        expiration_date = _ts(sub.get("current_period_end"))
    else:
        expiration_date = _ts(sub.get("ended_at")) or _ts(sub.get("canceled_at"))
    return PlatformTransaction(
        transaction_id=sub["id"],
        product_id=product_id,
        account_id=metadata.get("account_id"),
        verified=verified,
        purchase_date=_ts(sub.get("start_date")),
        revocation_date=revocation_date,
        expiration_date=expiration_date,
    )


def transaction_from_checkout(session: Any) -> Optional[PlatformTransaction]:
    metadata = session.get("metadata") or {}
    product_id = metadata.get("product_id")
    if not product_id:
        return None
    if session.get("mode") == "subscription":
        transaction_id = session.get("subscription") or session["id"]
    else:
        transaction_id = session.get("payment_intent") or session["id"]
    return PlatformTransaction(
        transaction_id=transaction_id,
        product_id=product_id,
        account_id=metadata.get("account_id") or session.get("client_reference_id"),
        verified=session.get("payment_status") in ("paid", "no_payment_required"),
        purchase_date=_ts(session.get("created")),
    )


class StripeBillingPlatform:
    """
    Stripe Checkout as the store. Purchases return `pending` with a checkout URL;
    the webhook later pushes the confirmed transaction onto the update stream.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()
        self._queue: asyncio.Queue[PlatformTransaction] = asyncio.Queue()
        self._price_ids: dict[str, str] = {}
        if self._settings.stripe_secret_key:
            stripe.api_key = self._settings.stripe_secret_key

    def _require_configured(self) -> None:
        if not self._settings.stripe_enabled:
            raise PurchaseTransportFailure("Billing is not configured.")

    async def fetch_products(self, product_ids: list[str]) -> list[StoreProduct]:
        self._require_configured()
        try:
            prices = await asyncio.to_thread(
                stripe.Price.list,
                lookup_keys=product_ids,
                active=True,
                expand=["data.product"],
            )
        except stripe.StripeError as e:
            logger.warning("Stripe price lookup failed: %s", e)
            raise PurchaseTransportFailure() from e
        products: list[StoreProduct] = []
        for price in prices.data:
            product = price.get("product")
            # Unexpanded products come back as a bare id string.
            name = product.get("name") if product is not None and not isinstance(product, str) else None
            amount = (price.get("unit_amount") or 0) / 100
            self._price_ids[price["lookup_key"]] = price["id"]
            products.append(
                StoreProduct(
                    product_id=price["lookup_key"],
                    display_name=name or price["lookup_key"],
                    display_price=f"{amount:.2f} {str(price.get('currency') or '').upper()}".strip(),
                    price_id=price["id"],
                )
            )
        return products

    async def purchase(
        self, product_id: str, account_id: str, subscription: bool = False
    ) -> PlatformPurchaseResult:
        self._require_configured()
        if product_id not in self._price_ids:
            await self.fetch_products([product_id])
        price_id = self._price_ids.get(product_id)
        if not price_id:
            raise PurchaseTransportFailure("This product is not available.")
        metadata = {"account_id": account_id, "product_id": product_id}
        params: dict[str, Any] = {
            "mode": "subscription" if subscription else "payment",
            "line_items": [{"price": price_id, "quantity": 1}],
            "client_reference_id": account_id,
            "metadata": metadata,
            "success_url": self._settings.stripe_success_url,
            "cancel_url": self._settings.stripe_cancel_url,
        }
        if subscription:
            params["subscription_data"] = {"metadata": metadata}
        try:
            session = await asyncio.to_thread(stripe.checkout.Session.create, **params)
        except stripe.StripeError as e:
            logger.warning("Stripe checkout creation failed: %s", e)
            raise PurchaseTransportFailure() from e
        return PlatformPurchaseResult(
            status=PlatformPurchaseStatus.PENDING,
            redirect_url=session.get("url"),
        )

    async def current_entitlements(self, account_id: str) -> list[PlatformTransaction]:
        if not self._settings.stripe_enabled:
            return []
        try:
            result = await asyncio.to_thread(
                stripe.Subscription.search,
                query=f"metadata['account_id']:'{account_id}'",
            )
        except stripe.StripeError as e:
            logger.warning("Stripe subscription search failed: %s", e)
            raise PurchaseTransportFailure() from e
        records = []
        for sub in result.data:
            tx = transaction_from_subscription(sub)
            if tx is not None:
                records.append(tx)
        return records

    def handle_event(self, event: Any) -> Optional[PlatformTransaction]:
        """Translate a signature-verified webhook event and push it onto the stream."""
        event_type = event["type"]
        obj = event["data"]["object"]
        tx = None
        if event_type == "checkout.session.completed":
            tx = transaction_from_checkout(obj)
        elif event_type in ("customer.subscription.updated", "customer.subscription.deleted"):
            tx = transaction_from_subscription(obj)
        if tx is not None:
            logger.info("Queued %s transaction %s for %s", event_type, tx.transaction_id, tx.product_id)
            self._queue.put_nowait(tx)
        return tx

    async def transaction_updates(self) -> AsyncIterator[PlatformTransaction]:
        while True:
            yield await self._queue.get()
