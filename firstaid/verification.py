from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional, Union

from .identity import IdentityService
from .timer import IntervalTimer, Scheduler
from .validator import CODE_LENGTH, is_valid_code

if TYPE_CHECKING:
    from .auth import AuthSession

logger = logging.getLogger(__name__)

INVALID_CODE = "Invalid verification code. Please try again."
RESEND_FAILED = "Failed to resend code. Please try again."


class VerificationFlow:
    """Six-slot code entry with a resend cooldown.

    The cooldown timer belongs to the flow; ``cancel`` and ``dispose`` stop
    it. Results of calls still in flight when the flow is cancelled are
    dropped.
    """

    def __init__(
        self,
        email: str,
        identity: IdentityService,
        scheduler: Optional[Scheduler] = None,
        on_complete: Optional[Callable[[], Union[None, Awaitable[None]]]] = None,
        cooldown: int = 60,
        session: Optional["AuthSession"] = None,
    ):
        self.email = email
        self.identity = identity
        self.on_complete = on_complete
        self.session = session
        self.cooldown = IntervalTimer(cooldown, scheduler=scheduler)
        self.slots: List[str] = [""] * CODE_LENGTH
        self.focus = 0
        self.error: Optional[str] = None
        self.is_resending = False
        self.is_submitting = False
        self.verified = False
        self._closed = False

    # entry

    def enter(self) -> None:
        self._clear_slots()
        self.cooldown.restart()

    @property
    def resend_enabled(self) -> bool:
        return self.cooldown.is_expired and not self.is_resending and not self._closed

    @property
    def seconds_until_resend(self) -> int:
        return 0 if self.cooldown.is_expired else self.cooldown.remaining

    def enter_digit(self, index: int, value: str) -> None:
        self._check_index(index)
        self.slots[index] = value[:1]
        if self.slots[index] and index < CODE_LENGTH - 1:
            self.focus = index + 1
        else:
            self.focus = index

    def backspace(self, index: int) -> None:
        self._check_index(index)
        self.slots[index] = ""
        if index > 0:
            self.slots[index - 1] = ""
            self.focus = index - 1
        else:
            self.focus = 0

    def enter_code(self, code: str) -> None:
        self._clear_slots()
        for i, ch in enumerate(code[:CODE_LENGTH]):
            self.enter_digit(i, ch)

    @property
    def code(self) -> str:
        return "".join(self.slots)

    @property
    def is_code_valid(self) -> bool:
        return is_valid_code(self.code)

    def _check_index(self, index: int) -> None:
        if not 0 <= index < CODE_LENGTH:
            raise IndexError(f"slot {index} out of range")

    def _clear_slots(self) -> None:
        self.slots = [""] * CODE_LENGTH
        self.focus = 0

    # actions

    async def submit_code(self) -> bool:
        if self._closed or self.is_submitting or not self.is_code_valid:
            return False
        self.is_submitting = True
        try:
            await self.identity.verify_code(self.code, self.email)
        except Exception as e:
            if self._closed:
                logger.debug("verification result dropped after cancel")
                return False
            logger.info("verification failed for %s: %s", self.email, e)
            self.error = INVALID_CODE
            self._clear_slots()
            return False
        finally:
            self.is_submitting = False
        if self._closed:
            logger.debug("verification result dropped after cancel")
            return False
        self.error = None
        self.verified = True
        self.cooldown.dispose()
        if self.on_complete is not None:
            result = self.on_complete()
            if inspect.isawaitable(result):
                await result
        return True

    async def resend(self) -> bool:
        if not self.resend_enabled:
            return False
        self.is_resending = True
        try:
            await self.identity.issue_verification_code(self.email)
        except Exception as e:
            if not self._closed:
                logger.warning("resending code to %s failed: %s", self.email, e)
                self.error = RESEND_FAILED
            return False
        finally:
            self.is_resending = False
        if self._closed:
            return False
        self.error = None
        self._clear_slots()
        self.cooldown.restart()
        return True

    def cancel(self) -> None:
        self.dispose()
        if self.session is not None:
            self.session.clear_pending()

    def dispose(self) -> None:
        self._closed = True
        self.cooldown.dispose()
