"""Sign-in, sign-out, account switch and account deletion."""

from fastapi import APIRouter, status

from app.core.exceptions import AvatarError, to_http_exception
from app.dependencies import CurrentAccount, Session
from app.schemas.account import SessionState, SignInRequest, SwitchAccountRequest

router = APIRouter(prefix="/session", tags=["session"])


@router.post("/sign-in", response_model=SessionState)
async def sign_in(body: SignInRequest, session: Session):
    """Sign in with the platform identity; runs the store sync and resumes any pending job."""
    try:
        await session.sign_in(body.identity, body.email)
    except AvatarError as e:
        raise to_http_exception(e)
    return session.ledger.snapshot()


@router.post("/sign-out", response_model=SessionState)
def sign_out(session: Session):
    session.sign_out()
    return session.ledger.snapshot()


@router.post("/switch", response_model=SessionState)
async def switch_account(body: SwitchAccountRequest, session: Session, account: CurrentAccount):
    """Switch to another identity cached on this device."""
    await session.switch_account(body.identity)
    return session.ledger.snapshot()


@router.delete("/account", status_code=status.HTTP_204_NO_CONTENT)
def delete_account(session: Session, account: CurrentAccount):
    """Forget the signed-in account: balance cache, processed purchases, results and history."""
    session.delete_account()
