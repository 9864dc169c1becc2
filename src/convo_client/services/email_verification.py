"""Email confirmation flow shown before chat is unlocked."""
from __future__ import annotations

import logging
from enum import StrEnum

from convo_client.application.policies.errors import clean_error
from convo_client.application.ports.agent import ConvoAgent

logger = logging.getLogger(__name__)


class VerificationStep(StrEnum):
    REMINDER = "reminder"
    SEND_EMAIL = "send_email"
    ENTER_CODE = "enter_code"
    DONE = "done"


class EmailVerification:
    """Drive the request-code / enter-code steps for the session's email.

    Failures never raise: they are cleaned into ``error`` for display and the
    step stays where it was.
    """

    def __init__(self, agent: ConvoAgent, *, show_reminder: bool = False) -> None:
        self._agent = agent
        self.step = VerificationStep.REMINDER if show_reminder else VerificationStep.SEND_EMAIL
        self.error = ""
        self.is_processing = False
        self.did_verify = False

    @property
    def email(self) -> str | None:
        return self._agent.session.email

    def begin(self) -> None:
        """Leave the reminder and show the send-email step."""
        if self.step is VerificationStep.REMINDER:
            self.step = VerificationStep.SEND_EMAIL
            self.error = ""

    def enter_code_step(self) -> None:
        """Skip to code entry when an email was already sent."""
        if self.step is not VerificationStep.DONE:
            self.step = VerificationStep.ENTER_CODE
            self.error = ""

    async def send_email(self) -> None:
        if self.is_processing:
            return
        self.error = ""
        self.is_processing = True
        try:
            await self._agent.request_email_confirmation()
        except Exception as exc:
            logger.warning("Requesting email confirmation failed: %s", exc)
            self.error = clean_error(exc)
        else:
            self.step = VerificationStep.ENTER_CODE
        finally:
            self.is_processing = False

    async def verify(self, code: str) -> None:
        if self.is_processing:
            return
        email = self.email
        if not email:
            self.error = "No email address is associated with this account."
            return
        self.error = ""
        self.is_processing = True
        try:
            await self._agent.confirm_email(email, code.strip())
        except Exception as exc:
            logger.warning("Email confirmation failed: %s", exc)
            self.error = clean_error(exc)
        else:
            self.did_verify = True
            self.step = VerificationStep.DONE
            logger.info("Email %s confirmed", email)
        finally:
            self.is_processing = False

    async def close(self) -> None:
        """Refresh the outer session if the email was confirmed."""
        if not self.did_verify:
            return
        try:
            await self._agent.resume_session()
        except Exception:
            logger.exception("Failed to resume session after email confirmation")
