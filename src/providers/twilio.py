"""
Twilio SMS sender over the Twilio REST API
"""

import asyncio
import logging
from typing import Optional
from dataclasses import dataclass, field

import aiohttp

from core.config import get_messaging_config
from core.phone import mask_phone_number
from .base_provider import MessageSender, SendResult, SenderConfig

logger = logging.getLogger(__name__)


@dataclass
class TwilioSenderConfig(SenderConfig):
    """Configuration for the Twilio sender"""
    account_sid: str = field(default_factory=lambda: get_messaging_config().twilio_account_sid or "")
    auth_token: str = field(default_factory=lambda: get_messaging_config().twilio_auth_token or "")
    from_number: str = field(default_factory=lambda: get_messaging_config().twilio_from_number or "")
    api_base: str = field(default_factory=lambda: get_messaging_config().twilio_api_base)
    timeout_seconds: float = field(default_factory=lambda: get_messaging_config().send_timeout)


class TwilioSender(MessageSender):
    """Posts messages to ``/Accounts/{sid}/Messages.json``"""

    def __init__(self, config: TwilioSenderConfig = None, session: Optional[aiohttp.ClientSession] = None):
        super().__init__(config or TwilioSenderConfig())
        self.config: TwilioSenderConfig = self.config
        self._session = session
        self._owns_session = session is None

    async def initialize(self) -> None:
        """Open the HTTP session"""
        if not self.config.account_sid or not self.config.auth_token or not self.config.from_number:
            raise ValueError("Twilio account SID, auth token and sender number are required")

        if self._session is None:
            self._session = aiohttp.ClientSession(
                auth=aiohttp.BasicAuth(self.config.account_sid, self.config.auth_token),
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            )
        self._initialized = True
        logger.info("Twilio sender initialized successfully")

    @property
    def messages_url(self) -> str:
        return f"{self.config.api_base.rstrip('/')}/Accounts/{self.config.account_sid}/Messages.json"

    async def send(self, to_phone: str, body: str) -> SendResult:
        if self._session is None:
            raise RuntimeError("Twilio sender not initialized. Call initialize() first.")

        payload = {
            'To': to_phone,
            'From': self.config.from_number,
            'Body': self._truncate(body),
        }

        try:
            async with self._session.post(self.messages_url, data=payload) as response:
                data = await response.json(content_type=None)

                if 200 <= response.status < 300:
                    return self._record(SendResult(
                        success=True,
                        provider='twilio',
                        message_id=data.get('sid'),
                        metadata={'status': data.get('status')}
                    ))

                error = data.get('message') or f"API returned {response.status}"
                logger.error(f"Twilio API error for {mask_phone_number(to_phone)}: {response.status} - {error}")
                return self._record(SendResult(
                    success=False,
                    provider='twilio',
                    error=error,
                    metadata={'status_code': response.status, 'code': data.get('code')}
                ))

        except asyncio.TimeoutError:
            logger.error(f"Twilio API timeout for {mask_phone_number(to_phone)}")
            return self._record(SendResult(success=False, provider='twilio', error='timeout'))
        except aiohttp.ClientError as e:
            logger.error(f"Twilio API exception for {mask_phone_number(to_phone)}: {e}")
            return self._record(SendResult(success=False, provider='twilio', error=str(e)))

    async def cleanup(self) -> None:
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None if self._owns_session else self._session
        self._initialized = False
