from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel

from .collaborators import ConnectivityMonitor
from .identity import EmailAlreadyInUse, IdentityService, IdentityUser, InvalidCredentials
from .timer import Scheduler
from .verification import INVALID_CODE, VerificationFlow

logger = logging.getLogger(__name__)

OFFLINE = "No internet connection. Please try again when you're back online."
LOGIN_FAILED = "The email or password you entered is incorrect. Please try again."
SIGNUP_FAILED = "Sign-up failed. Please try again."
EMAIL_IN_USE = "There's already an account with this email. Would you like to try logging in?"
RESET_FAILED = "We couldn't find an account with that email. Please check and try again."
DELETE_FAILED = "Incorrect password. Please try again."
PROVIDER_FAILED = "Sign-in with Google failed. Please try again."
RESET_SENT = "Please check your email for instructions to reset your password."


class ActionResult(BaseModel):
    ok: bool
    message: Optional[str] = None
    offer_login: bool = False

    model_config = {"extra": "forbid", "frozen": True}


class AuthSession(BaseModel):
    user: Optional[IdentityUser] = None
    temp_user: Optional[IdentityUser] = None
    verification_required: bool = False
    deletion_requested: bool = False

    model_config = {"extra": "forbid"}

    @property
    def signed_in(self) -> bool:
        return self.user is not None

    @property
    def display_name(self) -> Optional[str]:
        u = self.user or self.temp_user
        return u.display_name if u else None

    @property
    def email(self) -> Optional[str]:
        u = self.user or self.temp_user
        return u.email if u else None

    def clear_pending(self) -> None:
        self.temp_user = None
        self.verification_required = False


class AuthController:
    """Login, sign-up, reset and deletion flows over an IdentityService.

    Every collaborator failure is caught here and turned into one fixed
    message per action.
    """

    def __init__(self, identity: IdentityService, connectivity: Optional[ConnectivityMonitor] = None):
        self.identity = identity
        self.connectivity = connectivity
        self.session = AuthSession()
        self.busy = False

    async def _run(self, action: str, call: Callable[[], Awaitable[ActionResult]]) -> ActionResult:
        if self.busy:
            logger.debug("%s refused: another request is in flight", action)
            return ActionResult(ok=False)
        if self.connectivity is not None and not self.connectivity.connected:
            return ActionResult(ok=False, message=OFFLINE)
        self.busy = True
        try:
            return await call()
        finally:
            self.busy = False

    async def _send_code(self, email: str) -> None:
        try:
            await self.identity.issue_verification_code(email)
        except Exception as e:
            # the verification screen offers resend once the cooldown ends
            logger.warning("initial verification code for %s not sent: %s", email, e)

    def _await_verification(self, user: IdentityUser) -> None:
        self.session.temp_user = user
        self.session.verification_required = True

    async def sign_in(self, email: str, password: str) -> ActionResult:
        async def call() -> ActionResult:
            try:
                user = await self.identity.sign_in(email, password)
            except Exception as e:
                logger.info("sign-in failed for %s: %s", email, e)
                return ActionResult(ok=False, message=LOGIN_FAILED)
            self._await_verification(user)
            await self._send_code(email)
            return ActionResult(ok=True)

        return await self._run("sign_in", call)

    async def sign_in_with_provider(self, provider_token: str) -> ActionResult:
        """Sign in with a Google ID token; the provider has already verified the email."""

        async def call() -> ActionResult:
            try:
                user = await self.identity.sign_in_with_provider(provider_token)
            except Exception as e:
                logger.info("provider sign-in failed: %s", e)
                return ActionResult(ok=False, message=PROVIDER_FAILED)
            self.session.clear_pending()
            self.session.user = user
            await self._record_login(user)
            return ActionResult(ok=True)

        return await self._run("sign_in_with_provider", call)

    async def sign_up(self, first_name: str, surname: str, email: str, password: str) -> ActionResult:
        async def call() -> ActionResult:
            try:
                user = await self.identity.create_user(email, password, f"{first_name} {surname}")
            except EmailAlreadyInUse:
                return ActionResult(ok=False, message=EMAIL_IN_USE, offer_login=True)
            except Exception as e:
                logger.warning("sign-up failed for %s: %s", email, e)
                return ActionResult(ok=False, message=SIGNUP_FAILED)
            self._await_verification(user)
            await self._send_code(email)
            return ActionResult(ok=True)

        return await self._run("sign_up", call)

    async def reset_password(self, email: str) -> ActionResult:
        async def call() -> ActionResult:
            try:
                await self.identity.reset_password(email)
            except Exception as e:
                logger.info("password reset failed for %s: %s", email, e)
                return ActionResult(ok=False, message=RESET_FAILED)
            return ActionResult(ok=True, message=RESET_SENT)

        return await self._run("reset_password", call)

    async def _record_login(self, user: IdentityUser) -> None:
        try:
            await self.identity.record_login(user.uid)
        except Exception as e:
            logger.warning("last login for %s not recorded: %s", user.uid, e)

    def promote_verified(self) -> None:
        if self.session.temp_user is None:
            return
        self.session.user = self.session.temp_user
        self.session.clear_pending()
        logger.info("verified %s", self.session.user.email)

    async def finish_verification(self) -> None:
        self.promote_verified()
        if self.session.user is not None:
            await self._record_login(self.session.user)

    async def complete_verification(self, code: str) -> ActionResult:
        async def call() -> ActionResult:
            try:
                await self.identity.verify_code(code, self.session.email)
            except Exception as e:
                logger.info("verification failed: %s", e)
                return ActionResult(ok=False, message=INVALID_CODE)
            await self.finish_verification()
            return ActionResult(ok=True)

        return await self._run("complete_verification", call)

    def verification_flow(self, scheduler: Optional[Scheduler] = None, cooldown: int = 60) -> VerificationFlow:
        if not self.session.verification_required or self.session.temp_user is None:
            raise RuntimeError("no verification is pending")
        return VerificationFlow(
            self.session.temp_user.email,
            self.identity,
            scheduler=scheduler,
            on_complete=self.finish_verification,
            cooldown=cooldown,
            session=self.session,
        )

    def request_account_deletion(self) -> None:
        if not self.session.signed_in:
            raise RuntimeError("not signed in")
        self.session.deletion_requested = True

    def cancel_account_deletion(self) -> None:
        self.session.deletion_requested = False

    async def confirm_account_deletion(self, password: str) -> ActionResult:
        if not self.session.deletion_requested:
            raise RuntimeError("account deletion was not requested")

        async def call() -> ActionResult:
            try:
                await self.identity.reauthenticate(self.session.email, password)
                await self.identity.delete_account()
            except InvalidCredentials:
                logger.info("reauthentication rejected before account deletion")
                self.cancel_account_deletion()
                return ActionResult(ok=False, message=DELETE_FAILED)
            except Exception as e:
                logger.warning("account deletion failed: %s", e)
                self.cancel_account_deletion()
                return ActionResult(ok=False, message=DELETE_FAILED)
            await self.sign_out()
            return ActionResult(ok=True)

        return await self._run("delete_account", call)

    async def sign_out(self) -> None:
        try:
            await self.identity.sign_out()
        except Exception as e:
            logger.warning("sign-out failed: %s", e)
        self.session = AuthSession()
