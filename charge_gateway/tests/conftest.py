"""
Pytest configuration for charge_gateway. Test settings only; no real vendor account.
"""
import asyncio
import os

import pytest

from charge_gateway.config import Credentials
from charge_gateway.token_store import CredentialRecord, TokenStore

TEST_ENV = {
    "CHARGER_ACCOUNT_EMAIL": "driver@example.com",
    "CHARGER_ACCOUNT_PASSWORD": "correct-horse",
    "CHARGER_OAUTH_CLIENT_ID": "idp-client",
    "CHARGER_VENDOR_CLIENT_ID": "vendor-client",
    "CHARGER_VENDOR_CLIENT_SECRET": "vendor-secret",
    "CHARGER_API_BASE_URL": "https://api.vendor.test/v1",
    "CHARGER_ID": "CH-1001",
}

for _name, _value in TEST_ENV.items():
    os.environ.setdefault(_name, _value)


class FakeClock:
    """Callable clock whose time only moves when a test moves it."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAuthenticator:
    """
    Stands in for the scripted login: returns token-1, token-2, ... and saves each to the store.
    Set error to make every call fail; set gate (asyncio.Event) to hold logins until released.
    """

    def __init__(self, store: TokenStore, clock: FakeClock, lifetime: float = 600, delay: float = 0):
        self.store = store
        self.clock = clock
        self.lifetime = lifetime
        self.delay = delay
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.calls = 0

    async def authenticate(self, credentials: Credentials) -> CredentialRecord:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        record = CredentialRecord(
            access_token=f"token-{self.calls}",
            expires_at=self.clock() + self.lifetime,
            client_id=credentials.oauth_client_id,
            issued_at=self.clock(),
        )
        self.store.save(record)
        return record


@pytest.fixture
def credentials():
    return Credentials(
        email=TEST_ENV["CHARGER_ACCOUNT_EMAIL"],
        password=TEST_ENV["CHARGER_ACCOUNT_PASSWORD"],
        oauth_client_id=TEST_ENV["CHARGER_OAUTH_CLIENT_ID"],
        vendor_client_id=TEST_ENV["CHARGER_VENDOR_CLIENT_ID"],
        vendor_client_secret=TEST_ENV["CHARGER_VENDOR_CLIENT_SECRET"],
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    return TokenStore(tmp_path / "token.json")


@pytest.fixture
def fake_authenticator(store, clock):
    return FakeAuthenticator(store, clock)
