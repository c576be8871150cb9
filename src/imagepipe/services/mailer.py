"""Outbound notification delivery (mail relay collaborator)."""

import logging
from abc import ABC, abstractmethod

import httpx

from imagepipe.core.config import Settings
from imagepipe.core.exceptions import MailerError

logger = logging.getLogger(__name__)


class Mailer(ABC):
    """Sends one outbound message per call."""

    @abstractmethod
    async def send(self, to: str, subject: str, body: str) -> None:
        """Deliver a message.

        Raises:
            MailerError: If delivery fails; ``retryable`` tells whether a
                later attempt may succeed
        """
        pass


class LogMailer(Mailer):
    """Mailer for local development: writes messages to the log."""

    async def send(self, to: str, subject: str, body: str) -> None:
        logger.info(
            "Mail sent (log backend)",
            extra={"to": to, "subject": subject, "body": body},
        )


class HttpMailer(Mailer):
    """Posts messages to an HTTP mail relay."""

    def __init__(
        self,
        url: str,
        sender: str,
        timeout: float = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.sender = sender
        self.timeout = timeout
        self.transport = transport

    async def send(self, to: str, subject: str, body: str) -> None:
        payload = {
            "source": self.sender,
            "destination": to,
            "subject": subject,
            "body": body,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise MailerError(f"Mail relay timeout: {e}", retryable=True) from e
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            raise MailerError(
                f"Mail relay rejected message with status {status_code}",
                retryable=status_code >= 500 or status_code == 429,
            ) from e
        except httpx.HTTPError as e:
            raise MailerError(f"Mail relay unreachable: {e}", retryable=True) from e

        logger.info(
            "Mail sent",
            extra={"to": to, "subject": subject, "status_code": response.status_code},
        )


def get_mailer(settings: Settings) -> Mailer:
    """Build the mailer selected by ``MAILER_BACKEND``."""
    if settings.MAILER_BACKEND == "http":
        return HttpMailer(settings.MAILER_URL, settings.SOURCE_EMAIL, settings.MAILER_TIMEOUT)
    if settings.MAILER_BACKEND == "log":
        return LogMailer()
    raise ValueError(f"Unknown MAILER_BACKEND: {settings.MAILER_BACKEND}")
