"""Contract for the external identity/backend service.

Every operation is a coroutine; failures are reported with the
``IdentityError`` subclasses below so callers can pick a fixed message
without inspecting provider detail.
"""

from __future__ import annotations

import secrets
from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel

from .alerts import EmergencyContact


class IdentityError(Exception):
    pass


class InvalidCredentials(IdentityError):
    pass


class ProviderError(IdentityError):
    pass


class EmailAlreadyInUse(IdentityError):
    pass


class RegistrationError(IdentityError):
    pass


class UnknownAccount(IdentityError):
    pass


class InvalidCode(IdentityError):
    pass


class DeliveryError(IdentityError):
    pass


class IdentityUser(BaseModel):
    uid: str
    email: str
    display_name: Optional[str] = None

    model_config = {"extra": "forbid", "frozen": True}

    @property
    def initials(self) -> str:
        parts = (self.display_name or "").split()
        return "".join(p[0].upper() for p in parts[:2])


class IdentityService(ABC):
    @abstractmethod
    async def sign_in(self, email: str, password: str) -> IdentityUser: ...

    @abstractmethod
    async def sign_in_with_provider(self, provider_token: str) -> IdentityUser: ...

    @abstractmethod
    async def create_user(self, email: str, password: str, display_name: str) -> IdentityUser: ...

    @abstractmethod
    async def reset_password(self, email: str) -> None: ...

    def generate_verification_code(self) -> str:
        return f"{secrets.randbelow(1_000_000):06d}"

    @abstractmethod
    async def store_verification_code(self, email: str, code: str) -> None: ...

    @abstractmethod
    async def dispatch_verification_code(self, email: str, code: str) -> None: ...

    @abstractmethod
    async def verify_code(self, code: str, email: Optional[str] = None) -> None: ...

    @abstractmethod
    async def reauthenticate(self, email: str, password: str) -> None: ...

    @abstractmethod
    async def delete_account(self) -> None: ...

    @abstractmethod
    async def record_login(self, uid: str) -> None:
        """Stamp the user profile with the time of a completed sign-in."""

    @abstractmethod
    async def sign_out(self) -> None: ...

    @abstractmethod
    async def load_emergency_contacts(self) -> List[EmergencyContact]: ...

    @abstractmethod
    async def save_emergency_contacts(self, contacts: List[EmergencyContact]) -> None: ...

    async def issue_verification_code(self, email: str) -> str:
        """Generate, store and send a fresh code."""
        code = self.generate_verification_code()
        await self.store_verification_code(email, code)
        await self.dispatch_verification_code(email, code)
        return code
