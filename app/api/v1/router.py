"""API v1 router: include all route modules, GET /me."""

from fastapi import APIRouter

from app.api.v1 import billing, generations, session
from app.dependencies import Session
from app.schemas.account import SessionState

api_router = APIRouter()

api_router.include_router(session.router)
api_router.include_router(generations.router)
api_router.include_router(billing.router)


@api_router.get("/me", response_model=SessionState)
def me(session: Session):
    """Published state: sign-in, credits, subscription, job progress, latest result, history."""
    return session.ledger.snapshot()
