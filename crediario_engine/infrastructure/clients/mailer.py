"""Email relay client with exponential backoff retry logic"""

import asyncio
import logging
import httpx
from crediario_engine.config import settings
from crediario_engine.infrastructure.observability.metrics import mail_failure_counter

logger = logging.getLogger(__name__)


class Mailer:
    """Fire-and-forget email side channel"""

    def __init__(self, relay_url: str | None = None, timeout: float | None = None):
        self.relay_url = relay_url if relay_url is not None else settings.mail_relay_url
        self.timeout = timeout or settings.http_timeout_seconds
        self.max_retries = settings.mail_max_retries
        self.backoff_base = settings.mail_backoff_base

    async def send(self, to: str | None, subject: str, body: str) -> bool:
        """
        Deliver an email through the relay.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s (base^attempt)
        - Retries on 5xx errors and network failures

        Never raises: returns False when the message could not be delivered.
        Without a relay URL the message is only logged.
        """
        if not to:
            return False

        if not self.relay_url:
            logger.info("Email (log only)", extra={"to": to, "subject": subject})
            return True

        attempt = 0
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            while attempt < self.max_retries:
                try:
                    response = await client.post(
                        self.relay_url,
                        json={"to": to, "subject": subject, "html": body},
                    )
                    response.raise_for_status()
                    return True

                except (httpx.HTTPStatusError, httpx.RequestError) as e:
                    attempt += 1
                    mail_failure_counter.inc()

                    if attempt >= self.max_retries:
                        logger.warning("Email delivery failed", extra={"to": to, "subject": subject, "error": str(e)})
                        return False

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)

        return False
