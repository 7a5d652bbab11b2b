"""
Base Message Sender Interface

Defines the standard interface that all outbound SMS providers must implement.
Senders are injected into the dispatcher and the response intake; there is no
process-global messaging client.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    """Standardized outcome of one send attempt"""
    success: bool
    provider: str
    message_id: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses"""
        result = {
            'success': self.success,
            'provider': self.provider,
            'message_id': self.message_id,
            'metadata': self.metadata
        }
        if self.error:
            result['error'] = self.error
        return result


@dataclass
class SenderConfig:
    """Base configuration for senders"""
    timeout_seconds: float = 10.0
    max_body_length: int = 1600

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.max_body_length <= 0:
            raise ValueError("max_body_length must be positive")


class MessageSender(ABC):
    """
    Abstract base class for all SMS providers

    Failures are per message: ``send`` reports them in the SendResult and
    only raises for programming errors.
    """

    def __init__(self, config: SenderConfig = None):
        self.config = config or SenderConfig()
        self.provider_name = self.__class__.__name__.replace('Sender', '').lower()
        self._initialized = False

        # Statistics
        self.total_sent = 0
        self.total_failed = 0

    async def initialize(self) -> None:
        """Set up connections or credentials needed by the provider"""
        self._initialized = True

    @abstractmethod
    async def send(self, to_phone: str, body: str) -> SendResult:
        """
        Send one text message

        Args:
            to_phone: Recipient in E.164 form
            body: Message text

        Returns:
            SendResult describing the outcome
        """
        pass

    def _record(self, result: SendResult) -> SendResult:
        if result.success:
            self.total_sent += 1
        else:
            self.total_failed += 1
        return result

    def _truncate(self, body: str) -> str:
        return body[:self.config.max_body_length]

    def get_stats(self) -> Dict[str, Any]:
        """Provider statistics"""
        return {
            'provider': self.provider_name,
            'initialized': self._initialized,
            'sent': self.total_sent,
            'failed': self.total_failed,
            'config': {
                'timeout_seconds': self.config.timeout_seconds,
            }
        }

    async def cleanup(self) -> None:
        """Release provider resources on shutdown"""
        self._initialized = False
