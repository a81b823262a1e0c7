"""FastAPI dependency injection: the process-wide session and its signed-in account."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from app.schemas.account import AccountSnapshot
from app.services.session_service import AvatarSession


def get_session(request: Request) -> AvatarSession:
    """Session created in the app lifespan."""
    session = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is starting")
    return session


def get_current_account(
    session: Annotated[AvatarSession, Depends(get_session)],
) -> AccountSnapshot:
    """Require a signed-in account; raise 401 if missing."""
    account = session.ledger.account
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "NOT_SIGNED_IN", "message": "Please sign in first."},
        )
    return account


Session = Annotated[AvatarSession, Depends(get_session)]
CurrentAccount = Annotated[AccountSnapshot, Depends(get_current_account)]
