"""Credit ledger, signed-in identity and subscription flag, persisted per identity."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from pydantic import ValidationError

from app.config import Settings, get_settings
from app.core.exceptions import NotSignedIn
from app.core.kv_store import KeyValueStore, read_json
from app.schemas.account import AccountSnapshot, GeneratedVideo, LastResult, SessionState
from app.schemas.billing import PlatformTransaction

logger = logging.getLogger(__name__)

SIGNED_IN_KEY = "session:signed_in"
IDENTITY_KEY = "session:current_identity"
ACCOUNTS_KEY = "accounts"
PROCESSED_TX_PREFIX = "processed_tx:"
LAST_RESULT_PREFIX = "last_result:"
HISTORY_PREFIX = "history:"
DEFERRED_TX_PREFIX = "deferred_tx:"

Listener = Callable[[SessionState], None]


class LedgerStore:
    """
    Single-writer owner of the signed-in account. Every mutation writes the
    full snapshot map and session flags, except while restoring.
    """

    def __init__(self, store: KeyValueStore, settings: Optional[Settings] = None):
        self._store = store
        self._settings = settings or get_settings()
        self._restoring = False
        self._account: Optional[AccountSnapshot] = None
        self._history: list[GeneratedVideo] = []
        self._last_result = LastResult()
        self._is_generating = False
        self._message: Optional[str] = None
        self._listeners: list[Listener] = []

    # --- read side ---

    @property
    def signed_in(self) -> bool:
        return self._account is not None

    @property
    def account(self) -> Optional[AccountSnapshot]:
        return self._account.model_copy() if self._account else None

    @property
    def credits(self) -> int:
        return self._account.credits if self._account else 0

    def require_account(self) -> AccountSnapshot:
        if self._account is None:
            raise NotSignedIn()
        return self._account.model_copy()

    def history(self) -> list[GeneratedVideo]:
        return list(self._history)

    def snapshot(self) -> SessionState:
        account = self._account
        return SessionState(
            signed_in=account is not None,
            identity=account.identity if account else None,
            email=account.email if account else None,
            credits=account.credits if account else 0,
            subscription_active=account.subscription_active if account else False,
            next_reward_at=account.next_reward_at if account else None,
            is_generating=self._is_generating,
            latest_video_url=self._last_result.video_url,
            latest_error=self._last_result.error,
            message=self._message,
            history=list(self._history),
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns the unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # --- session ---

    def restore(self) -> None:
        """Rehydrate the last active identity; anything missing or unreadable means signed out."""
        self._restoring = True
        try:
            signed_in = self._store.get_str(SIGNED_IN_KEY) == "1"
            identity = self._store.get_str(IDENTITY_KEY)
            cached = self._load_accounts()
            if signed_in and identity and identity in cached:
                self._load_identity(cached[identity])
                logger.info("Restored session for %s (credits=%s)", identity, self._account.credits)
            else:
                self._reset()
        finally:
            self._restoring = False
        self._notify()

    def sign_in(self, identity: str, email_hint: Optional[str] = None) -> AccountSnapshot:
        self._restoring = True
        try:
            previous = self._load_accounts().get(identity)
            email = (
                email_hint
                or (previous.email if previous else None)
                or f"{identity}@{self._settings.placeholder_email_domain}"
            )
            if previous:
                account = previous.model_copy(update={"email": email})
            else:
                account = AccountSnapshot(identity=identity, email=email)
            self._load_identity(account)
        finally:
            self._restoring = False
        logger.info("Signed in %s (credits=%s)", identity, self._account.credits)
        self._persist()
        self._notify()
        return self._account.model_copy()

    def sign_out(self) -> None:
        if self._account is None:
            return
        identity = self._account.identity
        self._persist()
        self._store.remove(f"{HISTORY_PREFIX}{identity}")
        self._reset()
        self._write_session_flags(signed_in=False, identity=None)
        logger.info("Signed out %s", identity)
        self._notify()

    def switch_account(self, identity: str) -> AccountSnapshot:
        self.sign_out()
        return self.sign_in(identity)

    def delete_account(self) -> None:
        """Drop every persisted trace of the current identity, then sign out without flushing."""
        account = self.require_account()
        identity = account.identity
        accounts = self._load_accounts()
        accounts.pop(identity, None)
        self._store.set_json(ACCOUNTS_KEY, {k: v.model_dump(mode="json") for k, v in accounts.items()})
        for prefix in (PROCESSED_TX_PREFIX, LAST_RESULT_PREFIX, HISTORY_PREFIX, DEFERRED_TX_PREFIX):
            self._store.remove(f"{prefix}{identity}")
        self._reset()
        self._write_session_flags(signed_in=False, identity=None)
        logger.info("Deleted account %s", identity)
        self._notify()

    # --- ledger ---

    def add_credits(self, amount: int) -> int:
        if amount < 0:
            raise ValueError("amount must be non-negative")
        account = self._mutable_account()
        account.credits += amount
        self._commit()
        return account.credits

    def debit_credits(self, amount: int) -> int:
        """Decrease the balance, clamped at zero."""
        if amount < 0:
            raise ValueError("amount must be non-negative")
        account = self._mutable_account()
        account.credits = max(0, account.credits - amount)
        self._commit()
        return account.credits

    def set_subscription(self, active: bool) -> None:
        account = self._mutable_account()
        if account.subscription_active == active:
            return
        account.subscription_active = active
        self._commit()

    def set_next_reward(self, at: Optional[datetime]) -> None:
        account = self._mutable_account()
        account.next_reward_at = at
        self._commit()

    def processed_transactions(self) -> set[str]:
        account = self.require_account()
        return set(read_json(self._store, f"{PROCESSED_TX_PREFIX}{account.identity}", []))

    def mark_processed(self, transaction_id: str) -> None:
        account = self.require_account()
        key = f"{PROCESSED_TX_PREFIX}{account.identity}"
        ids = list(read_json(self._store, key, []))
        if transaction_id not in ids:
            ids.append(transaction_id)
            self._store.set_json(key, ids)

    def defer_transaction(self, identity: str, tx: PlatformTransaction) -> None:
        """Keep a transaction for an identity that is not signed in."""
        key = f"{DEFERRED_TX_PREFIX}{identity}"
        pending = list(read_json(self._store, key, []))
        pending.append(tx.model_dump(mode="json"))
        self._store.set_json(key, pending)

    def deferred_transactions(self) -> list[PlatformTransaction]:
        account = self.require_account()
        records = []
        for raw in read_json(self._store, f"{DEFERRED_TX_PREFIX}{account.identity}", []):
            try:
                records.append(PlatformTransaction.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping unreadable deferred transaction for %s", account.identity)
        return records

    def clear_deferred_transactions(self) -> None:
        account = self.require_account()
        self._store.remove(f"{DEFERRED_TX_PREFIX}{account.identity}")

    # --- generation results ---

    def record_result(self, video_url: Optional[str] = None, error: Optional[str] = None) -> None:
        account = self.require_account()
        self._last_result = LastResult(video_url=video_url, error=error)
        self._store.set_json(f"{LAST_RESULT_PREFIX}{account.identity}", self._last_result.model_dump())
        self._notify()

    def append_history(self, video: GeneratedVideo) -> None:
        account = self.require_account()
        self._history.insert(0, video)
        self._store.set_json(
            f"{HISTORY_PREFIX}{account.identity}",
            [v.model_dump(mode="json") for v in self._history],
        )
        self._notify()

    def set_generating(self, flag: bool) -> None:
        if self._is_generating != flag:
            self._is_generating = flag
            self._notify()

    def set_message(self, message: Optional[str]) -> None:
        self._message = message
        self._notify()

    # --- internals ---

    def _mutable_account(self) -> AccountSnapshot:
        if self._account is None:
            raise NotSignedIn()
        return self._account

    def _commit(self) -> None:
        self._persist()
        self._notify()

    def _load_identity(self, account: AccountSnapshot) -> None:
        self._account = account
        identity = account.identity
        self._history = []
        for raw in read_json(self._store, f"{HISTORY_PREFIX}{identity}", []):
            try:
                self._history.append(GeneratedVideo.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping unreadable history entry for %s", identity)
        try:
            self._last_result = LastResult.model_validate(
                read_json(self._store, f"{LAST_RESULT_PREFIX}{identity}", {})
            )
        except ValidationError:
            self._last_result = LastResult()
        self._message = None

    def _reset(self) -> None:
        self._account = None
        self._history = []
        self._last_result = LastResult()
        self._is_generating = False
        self._message = None

    def _load_accounts(self) -> dict[str, AccountSnapshot]:
        raw = read_json(self._store, ACCOUNTS_KEY, {})
        if not isinstance(raw, dict):
            logger.warning("Ignoring malformed account cache")
            return {}
        accounts: dict[str, AccountSnapshot] = {}
        for identity, data in raw.items():
            try:
                accounts[identity] = AccountSnapshot.model_validate(data)
            except ValidationError:
                logger.warning("Ignoring corrupt account snapshot for %s", identity)
        return accounts

    def _persist(self) -> None:
        if self._restoring or self._account is None:
            return
        accounts = self._load_accounts()
        accounts[self._account.identity] = self._account
        self._store.set_json(ACCOUNTS_KEY, {k: v.model_dump(mode="json") for k, v in accounts.items()})
        self._write_session_flags(signed_in=True, identity=self._account.identity)

    def _write_session_flags(self, signed_in: bool, identity: Optional[str]) -> None:
        self._store.set_str(SIGNED_IN_KEY, "1" if signed_in else "0")
        if identity:
            self._store.set_str(IDENTITY_KEY, identity)
        else:
            self._store.remove(IDENTITY_KEY)

    def _notify(self) -> None:
        if not self._listeners:
            return
        state = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Session state listener failed")
