"""
WhatsApp delivery through the Twilio Messages REST API
"""
import asyncio
import logging
from typing import Optional

import httpx

from mention_pipeline.core.config import get_settings
from mention_pipeline.core.exceptions import NotifierError
from mention_pipeline.services.notification_service import Notifier

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class WhatsAppNotifier(Notifier):
    """Sends WhatsApp messages from the configured Twilio sender"""

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.account_sid = account_sid or settings.twilio_account_sid
        self.auth_token = auth_token or settings.twilio_auth_token
        self.from_number = from_number or settings.twilio_whatsapp_number
        self.timeout_seconds = timeout_seconds or settings.notifier_timeout_seconds
        self.transport = transport

    @property
    def messages_url(self) -> str:
        return f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json"

    def send(self, address: str, message: str) -> bool:
        """
        Send one WhatsApp message

        Args:
            address: E.164 phone number (e.g. +6591234567)
            message: Message body

        Returns:
            True once Twilio accepted the message

        Raises:
            NotifierError: delivery was not accepted by Twilio
        """
        if not (self.account_sid and self.auth_token):
            raise NotifierError("Twilio credentials not configured")

        try:
            asyncio.run(self._post(address, message))
        except httpx.HTTPError as e:
            raise NotifierError(f"WhatsApp request to {address} failed: {e}") from e

        logger.info(f"WhatsApp message sent to {address}")
        return True

    async def _post(self, address: str, message: str):
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds),
            auth=(self.account_sid, self.auth_token),
            transport=self.transport,
        ) as client:
            response = await client.post(
                self.messages_url,
                data={
                    "From": self.from_number,
                    "To": f"whatsapp:{address}",
                    "Body": message,
                },
            )

        if response.status_code >= 300:
            raise NotifierError(
                f"Twilio rejected message to {address}: {response.status_code} {response.text[:200]}"
            )
