"""Resend mail provider client for the SolRelay agent.

Thin httpx wrapper around Resend's ``POST /emails`` endpoint with
auth/rate-limit error mapping and bounded retry on transient failures.
Retries here only cover a single delivery call; re-queuing a failed email
across loop iterations is the dispatcher's job.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import httpx

from src.core.config import EmailConfig
from src.core.exceptions import MailAuthenticationError, MailError, MailRateLimitError

logger = logging.getLogger("solrelay.mail")


class ResendClient:
    """HTTP client for the Resend transactional email API."""

    def __init__(
        self,
        config: Optional[EmailConfig] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.config = config or EmailConfig()
        self.api_key = api_key or self.config.api_key or ""
        self.base_url = self.config.base_url.rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self.config.timeout_seconds),
                transport=self._transport,
            )
        return self._client

    def send(self, to: str, subject: str, html: str, sender: Optional[str] = None) -> str:
        """Deliver one message. Returns the provider message id."""
        if not self.api_key:
            raise MailAuthenticationError("RESEND_API_KEY not set")

        payload = {
            "from": sender or self.config.from_email,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        return self._request_with_retry(
            payload,
            headers,
            max_retries=self.config.provider_retries + 1,
            backoff_base_seconds=self.config.provider_backoff_seconds,
        )

    def _request_with_retry(
        self,
        payload: dict,
        headers: dict,
        max_retries: int = 2,
        backoff_base_seconds: float = 1.0,
    ) -> str:
        """POST with exponential backoff on network errors and 5xx."""
        last_error: Optional[Exception] = None

        for attempt in range(max_retries):
            try:
                resp = self.client.post(f"{self.base_url}/emails", json=payload, headers=headers)

                if resp.status_code in (401, 403):
                    raise MailAuthenticationError(f"Provider rejected credentials ({resp.status_code})")
                if resp.status_code == 429:
                    raise MailRateLimitError("Provider rate limit hit")
                if resp.status_code >= 500:
                    last_error = MailError(f"Provider server error {resp.status_code}")
                    if attempt < max_retries - 1:
                        delay = _backoff_delay(attempt, backoff_base_seconds)
                        logger.warning("Provider error %d. Waiting %.1fs", resp.status_code, delay)
                        time.sleep(delay)
                    continue
                if resp.status_code >= 400:
                    raise MailError(f"Provider rejected message ({resp.status_code}): {resp.text[:200]}")

                data = resp.json()
                message_id = data.get("id")
                if not message_id:
                    raise MailError("Provider response missing message id")
                return str(message_id)

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                last_error = e
                if attempt < max_retries - 1:
                    delay = _backoff_delay(attempt, backoff_base_seconds)
                    logger.warning("Network error: %s. Waiting %.1fs", e, delay)
                    time.sleep(delay)

        raise MailError(f"Delivery failed after {max_retries} attempts: {last_error}")

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None


def _backoff_delay(attempt: int, base_seconds: float = 1.0) -> float:
    """Exponential backoff: 1s, 2s, 4s, ..."""
    return base_seconds * (2 ** attempt)
