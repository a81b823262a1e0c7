"""Store catalog, purchases, entitlement sync and Stripe webhooks."""

import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Header, HTTPException, Request, status
from stripe import Webhook

from app.config import get_settings
from app.core.exceptions import AvatarError, to_http_exception
from app.dependencies import CurrentAccount, Session
from app.schemas.account import SessionState
from app.schemas.billing import Catalog, PurchaseOutcome, PurchaseRequest
from app.services.billing_platform import StripeBillingPlatform

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])
webhook_router = APIRouter(prefix="/webhooks", tags=["billing"])


@router.get("/catalog", response_model=Catalog)
async def get_catalog(session: Session):
    """Subscription and credit packs. Loaded once; a store outage returns 503 with the message."""
    catalog = await session.reconciler.load_catalog()
    if catalog is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "CATALOG_UNAVAILABLE", "message": session.reconciler.error},
        )
    return catalog


@router.post("/purchase", response_model=PurchaseOutcome)
async def purchase(body: PurchaseRequest, session: Session, account: CurrentAccount):
    """Buy the subscription or a credit pack (packs need an active subscription)."""
    try:
        return await session.reconciler.purchase(body.product_type)
    except AvatarError as e:
        raise to_http_exception(e)


@router.post("/sync", response_model=SessionState)
async def sync(session: Session, account: CurrentAccount):
    """App came to the foreground: refresh the subscription, then catch up weekly rewards."""
    await session.sync()
    return session.ledger.snapshot()


@webhook_router.post("/stripe")
async def stripe_webhook(
    request: Request,
    session: Session,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
):
    """Handle Stripe webhooks: checkout.session.completed, customer.subscription.updated/deleted."""
    settings = get_settings()
    if not settings.stripe_webhook_secret or not settings.stripe_secret_key:
        raise HTTPException(status_code=status.HTTP_501_NOT_IMPLEMENTED, detail="Stripe not configured")
    payload = await request.body()
    try:
        event = Webhook.construct_event(
            payload, stripe_signature or "", settings.stripe_webhook_secret
        )
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature")
    platform = session.platform
    if isinstance(platform, StripeBillingPlatform):
        platform.handle_event(event)
    else:
        logger.warning("Stripe event %s received but the store is not Stripe", event["type"])
    return {"received": True}
