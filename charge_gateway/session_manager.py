"""
Holds the current credential record and decides when a new login is needed.
Two states: unauthenticated, authenticated(record). Expiry is checked lazily on each call;
no refresh grant, an expired token always means a full login.
Concurrent callers share one in-flight login (single-flight per process).
"""
import asyncio
import logging
import time
from typing import Protocol

from charge_gateway.config import Credentials
from charge_gateway.errors import StorageError
from charge_gateway.token_store import CredentialRecord, TokenStore

logger = logging.getLogger(__name__)

STATE_AUTHENTICATED = "authenticated"
STATE_UNAUTHENTICATED = "unauthenticated"


def _retrieve_login_error(task: asyncio.Task) -> None:
    # Marks the exception retrieved when every waiter was cancelled before the login ended
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning("Login attempt ended with %s: %s", error.__class__.__name__, error)


class LoginFlow(Protocol):
    async def authenticate(self, credentials: Credentials) -> CredentialRecord:
        ...


class SessionManager:
    def __init__(
        self,
        *,
        store: TokenStore,
        authenticator: LoginFlow,
        credentials: Credentials,
        expiry_margin: float = 0,
        clock=time.time,
    ):
        self.store = store
        self.authenticator = authenticator
        self.credentials = credentials
        self.expiry_margin = expiry_margin
        self._clock = clock
        self._record: CredentialRecord | None = None
        self._cache_checked = False
        self._login_task: asyncio.Task | None = None

    @property
    def state(self) -> str:
        if self._record is not None and not self._record.expired(self._clock(), self.expiry_margin):
            return STATE_AUTHENTICATED
        return STATE_UNAUTHENTICATED

    async def get_valid_token(self) -> str:
        """
        Current access token if unexpired; otherwise log in (or join the login already running).
        Raises AuthenticationError if the login fails.
        """
        if not self._cache_checked:
            self._cache_checked = True
            self._record = self.store.load()
            if self._record is not None:
                logger.info("Loaded cached token (client_id=%s)", self._record.client_id)

        if self._record is not None and not self._record.expired(self._clock(), self.expiry_margin):
            return self._record.access_token

        if self._login_task is None:
            logger.info("No valid token; starting login")
            self._login_task = asyncio.create_task(self._login())
            self._login_task.add_done_callback(_retrieve_login_error)
        else:
            logger.debug("Login already in progress; waiting for it")
        # shield: a caller going away must not cancel the login other callers wait on
        record = await asyncio.shield(self._login_task)
        return record.access_token

    async def _login(self) -> CredentialRecord:
        try:
            record = await self.authenticator.authenticate(self.credentials)
            self._record = record
            return record
        finally:
            self._login_task = None

    def invalidate(self, rejected_token: str | None = None) -> None:
        """
        Drop the current token (vendor rejected it). The next call logs in again.
        With rejected_token, a record obtained by a newer login is kept.
        """
        if self._record is None:
            return
        if rejected_token is not None and rejected_token != self._record.access_token:
            return
        logger.warning("Token rejected by vendor API; clearing cached token")
        self._record = None
        self._cache_checked = True
        try:
            self.store.clear()
        except StorageError as e:
            # In-memory state already forces a new login
            logger.error("%s", e)
