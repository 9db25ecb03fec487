import asyncio
from typing import Dict, List, Optional, Tuple

import pytest

from firstaid.alerts import EmergencyContact
from firstaid.catalog import Catalog, load_catalog
from firstaid.identity import (
    EmailAlreadyInUse,
    IdentityService,
    IdentityUser,
    InvalidCode,
    InvalidCredentials,
    ProviderError,
    UnknownAccount,
)
from firstaid.timer import ManualScheduler


class FakeIdentity(IdentityService):
    def __init__(self):
        self.accounts: Dict[str, Tuple[str, str]] = {"ada@example.com": ("Secret1", "Ada Lovelace")}
        self.codes: Dict[str, str] = {}
        self.sent: List[Tuple[str, str]] = []
        self.calls: List[str] = []
        self.fail: Dict[str, Exception] = {}
        self.hold: Optional[asyncio.Event] = None
        self.current: Optional[IdentityUser] = None
        self.next_code = "123456"
        self.provider_tokens: Dict[str, str] = {"google-ada": "ada@example.com"}
        self.logins: List[str] = []
        self.contacts: Dict[str, List[EmergencyContact]] = {}

    async def _enter(self, op: str) -> None:
        self.calls.append(op)
        if self.hold is not None:
            await self.hold.wait()
        if op in self.fail:
            raise self.fail[op]

    def generate_verification_code(self) -> str:
        return self.next_code

    async def sign_in(self, email, password):
        await self._enter("sign_in")
        if self.accounts.get(email, (None,))[0] != password:
            raise InvalidCredentials(email)
        self.current = IdentityUser(uid=f"uid-{email}", email=email, display_name=self.accounts[email][1])
        return self.current

    async def sign_in_with_provider(self, provider_token):
        await self._enter("sign_in_with_provider")
        email = self.provider_tokens.get(provider_token)
        if email is None:
            raise ProviderError(provider_token)
        self.current = IdentityUser(uid=f"uid-{email}", email=email, display_name=self.accounts[email][1])
        return self.current

    async def create_user(self, email, password, display_name):
        await self._enter("create_user")
        if email in self.accounts:
            raise EmailAlreadyInUse(email)
        self.accounts[email] = (password, display_name)
        self.current = IdentityUser(uid=f"uid-{email}", email=email, display_name=display_name)
        return self.current

    async def reset_password(self, email):
        await self._enter("reset_password")
        if email not in self.accounts:
            raise UnknownAccount(email)

    async def store_verification_code(self, email, code):
        await self._enter("store_verification_code")
        self.codes[email] = code

    async def dispatch_verification_code(self, email, code):
        await self._enter("dispatch_verification_code")
        self.sent.append((email, code))

    async def verify_code(self, code, email=None):
        await self._enter("verify_code")
        email = email or (self.current.email if self.current else None)
        if self.codes.get(email) != code:
            raise InvalidCode(code)
        del self.codes[email]

    async def reauthenticate(self, email, password):
        await self._enter("reauthenticate")
        if self.accounts.get(email, (None,))[0] != password:
            raise InvalidCredentials(email)

    async def delete_account(self):
        await self._enter("delete_account")
        self.accounts.pop(self.current.email, None)
        self.current = None

    async def record_login(self, uid):
        await self._enter("record_login")
        self.logins.append(uid)

    async def sign_out(self):
        await self._enter("sign_out")
        self.current = None

    async def load_emergency_contacts(self):
        await self._enter("load_emergency_contacts")
        if self.current is None:
            return []
        return [c.model_copy() for c in self.contacts.get(self.current.uid, [])]

    async def save_emergency_contacts(self, contacts):
        await self._enter("save_emergency_contacts")
        self.contacts[self.current.uid] = [c.model_copy() for c in contacts]


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def catalog() -> Catalog:
    return load_catalog()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()
