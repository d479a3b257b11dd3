"""Resend API client for outbound email."""

import asyncio
from typing import Any, Dict, Optional

import aiohttp
import structlog

from personifeed.infrastructure.error_handling import TransportRejected, TransportTimeout
from personifeed.models.email import EmailContent


class ResendAPIClient:
    """Thin async client for Resend's ``POST /emails`` endpoint.

    Sends exactly one request per call and never retries; retry policy
    belongs to the caller.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.resend.com",
        timeout_seconds: float = 10.0,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.logger = structlog.get_logger(__name__)

        self.headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "User-Agent": "Personifeed/1.0"
        }

    async def send_email(self, email: EmailContent) -> str:
        """Send one email and return the provider message id.

        Raises:
            TransportRejected: non-2xx answer or connection failure
            TransportTimeout: no answer within the configured timeout
        """
        payload = email.to_payload()
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    f"{self.base_url}/emails",
                    headers=self.headers,
                    json=payload,
                ) as response:
                    if 200 <= response.status < 300:
                        result = await self._read_json(response)
                        return str(result.get("id", ""))
                    error_text = await response.text()
                    raise TransportRejected(
                        f"Resend API error {response.status}: {error_text}",
                        status_code=response.status,
                        details={"recipient": email.to},
                    )
        except asyncio.TimeoutError as e:
            raise TransportTimeout(
                "Resend API request timed out", {"recipient": email.to}
            ) from e
        except aiohttp.ClientError as e:
            raise TransportRejected(
                f"Resend API request failed: {e}", details={"recipient": email.to}
            ) from e

    @staticmethod
    async def _read_json(response: aiohttp.ClientResponse) -> Dict[str, Any]:
        try:
            data: Optional[Any] = await response.json(content_type=None)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
