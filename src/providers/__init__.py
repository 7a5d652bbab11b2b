"""
SMS Providers Package

This package contains all outbound message senders following a standardized interface.

Available Providers:
- TwilioSender: Twilio REST API
- LogSender: logs messages instead of sending them (development)

All senders implement the MessageSender interface for consistent integration.
"""

from .base_provider import MessageSender, SendResult, SenderConfig
from .twilio import TwilioSender, TwilioSenderConfig
from .log_sender import LogSender

__all__ = [
    # Base classes
    'MessageSender',
    'SendResult',
    'SenderConfig',

    # Provider implementations
    'TwilioSender',
    'TwilioSenderConfig',
    'LogSender',
]

# Provider registry for dynamic loading
PROVIDER_REGISTRY = {
    'twilio': TwilioSender,
    'log': LogSender,
}


def get_provider_class(provider_name: str):
    """
    Get sender class by name

    Args:
        provider_name: Name of the provider ('twilio', 'log')

    Returns:
        Sender class

    Raises:
        ValueError: If provider name is not recognized
    """
    provider_name = provider_name.lower()

    if provider_name not in PROVIDER_REGISTRY:
        available = ', '.join(PROVIDER_REGISTRY.keys())
        raise ValueError(f"Unknown provider '{provider_name}'. Available providers: {available}")

    return PROVIDER_REGISTRY[provider_name]


def create_provider(provider_name: str, config=None, **kwargs):
    """
    Create sender instance by name

    Args:
        provider_name: Name of the provider
        config: Provider-specific configuration object
        **kwargs: Additional arguments passed to provider constructor

    Returns:
        Sender instance
    """
    provider_class = get_provider_class(provider_name)
    return provider_class(config=config, **kwargs)
