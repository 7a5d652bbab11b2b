"""
Development sender that writes messages to the log instead of sending them
"""

import logging
from uuid import uuid4

from core.phone import mask_phone_number
from .base_provider import MessageSender, SendResult

logger = logging.getLogger(__name__)


class LogSender(MessageSender):
    """Always succeeds; the message body is logged at INFO"""

    async def send(self, to_phone: str, body: str) -> SendResult:
        logger.info(f"SMS to {mask_phone_number(to_phone)}: {self._truncate(body)!r}")
        return self._record(SendResult(success=True, provider='log', message_id=uuid4().hex))
