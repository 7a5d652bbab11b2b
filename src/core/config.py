"""
Centralized configuration management for the BloodLink dispatch service
"""

import os
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Database configuration settings"""
    uri: str = field(default_factory=lambda: os.getenv("MONGODB_URI", "mongodb://localhost:27017"))
    name: str = field(default_factory=lambda: os.getenv("BLOODLINK_DB", "bloodlink"))
    max_pool_size: int = field(default_factory=lambda: int(os.getenv("MONGO_POOL_SIZE", "50")))
    min_pool_size: int = field(default_factory=lambda: int(os.getenv("MONGO_MIN_POOL_SIZE", "5")))
    max_idle_time_ms: int = field(default_factory=lambda: int(os.getenv("MONGO_MAX_IDLE_TIME_MS", "10000")))
    server_selection_timeout_ms: int = field(default_factory=lambda: int(os.getenv("MONGO_SERVER_SELECTION_TIMEOUT_MS", "5000")))

    # Collection names
    users_collection: str = "users"
    requests_collection: str = "emergency_requests"


@dataclass
class RedisConfig:
    """Redis configuration settings"""
    host: str = field(default_factory=lambda: os.getenv("REDIS_HOST", "localhost"))
    port: int = field(default_factory=lambda: int(os.getenv("REDIS_PORT", "6379")))
    password: Optional[str] = field(default_factory=lambda: os.getenv("REDIS_PASSWORD"))
    db: int = field(default_factory=lambda: int(os.getenv("REDIS_DB", "0")))
    max_connections: int = field(default_factory=lambda: int(os.getenv("REDIS_POOL_SIZE", "20")))
    socket_timeout: int = field(default_factory=lambda: int(os.getenv("REDIS_SOCKET_TIMEOUT", "5")))
    socket_connect_timeout: int = field(default_factory=lambda: int(os.getenv("REDIS_CONNECT_TIMEOUT", "5")))
    decode_responses: bool = False  # We want bytes for orjson serialization

    # Sweep coordination
    sweep_lock_ttl_seconds: int = field(default_factory=lambda: int(os.getenv("SWEEP_LOCK_TTL", "900")))
    reminder_cooldown_seconds: int = field(default_factory=lambda: int(os.getenv("REMINDER_COOLDOWN_SECONDS", "82800")))


@dataclass
class MessagingConfig:
    """Outbound SMS provider settings"""
    provider_name: str = field(default_factory=lambda: os.getenv("SMS_PROVIDER", "log"))

    # Twilio specific
    twilio_account_sid: Optional[str] = field(default_factory=lambda: os.getenv("TWILIO_ACCOUNT_SID"))
    twilio_auth_token: Optional[str] = field(default_factory=lambda: os.getenv("TWILIO_AUTH_TOKEN"))
    twilio_from_number: Optional[str] = field(default_factory=lambda: os.getenv("TWILIO_FROM_NUMBER"))
    twilio_api_base: str = field(default_factory=lambda: os.getenv("TWILIO_API_BASE", "https://api.twilio.com/2010-04-01"))

    send_timeout: float = field(default_factory=lambda: float(os.getenv("SMS_TIMEOUT", "10")))
    default_country_code: str = field(default_factory=lambda: os.getenv("DEFAULT_COUNTRY_CODE", "+244"))


@dataclass
class MatchingConfig:
    """Donor matching and reminder settings"""
    radius_meters: float = field(default_factory=lambda: float(os.getenv("MATCH_RADIUS_METERS", "50000")))
    geohash_precision: int = field(default_factory=lambda: int(os.getenv("GEOHASH_PRECISION", "10")))
    reminder_lapse_days: int = field(default_factory=lambda: int(os.getenv("REMINDER_LAPSE_DAYS", "90")))
    sweep_interval_seconds: int = field(default_factory=lambda: int(os.getenv("SWEEP_INTERVAL_SECONDS", "86400")))
    sweep_enabled: bool = field(default_factory=lambda: os.getenv("SWEEP_ENABLED", "true").lower() == "true")


@dataclass
class LoggingConfig:
    """Logging configuration settings"""
    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    format: str = field(default_factory=lambda: os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    # File logging
    log_file: Optional[str] = field(default_factory=lambda: os.getenv("LOG_FILE"))
    max_file_size: int = field(default_factory=lambda: int(os.getenv("LOG_MAX_FILE_SIZE", "10485760")))  # 10MB
    backup_count: int = field(default_factory=lambda: int(os.getenv("LOG_BACKUP_COUNT", "5")))


@dataclass
class PerformanceConfig:
    """Timeouts, fan-out limits and retry policy"""
    store_timeout: float = field(default_factory=lambda: float(os.getenv("STORE_TIMEOUT", "10")))
    dispatch_max_concurrency: int = field(default_factory=lambda: int(os.getenv("DISPATCH_MAX_CONCURRENCY", "40")))
    # A SENDING claim older than this belongs to a dead pass and may be taken over
    delivery_claim_ttl_seconds: int = field(default_factory=lambda: int(os.getenv("DELIVERY_CLAIM_TTL_SECONDS", "300")))

    # Optimistic concurrency
    lifecycle_max_attempts: int = field(default_factory=lambda: int(os.getenv("LIFECYCLE_MAX_ATTEMPTS", "5")))

    # Infrastructure retries at the entry points
    retry_max_attempts: int = field(default_factory=lambda: int(os.getenv("RETRY_MAX_ATTEMPTS", "3")))
    retry_base_delay_seconds: float = field(default_factory=lambda: float(os.getenv("RETRY_BASE_DELAY_SECONDS", "0.5")))


@dataclass
class ApplicationConfig:
    """Main application configuration"""
    # Basic app settings
    app_name: str = field(default_factory=lambda: os.getenv("APP_NAME", "BloodLink Dispatch"))
    app_version: str = field(default_factory=lambda: os.getenv("APP_VERSION", "1.0.0"))
    environment: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")

    # Server settings
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))

    # Component configurations
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    messaging: MessagingConfig = field(default_factory=MessagingConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)

    def __post_init__(self):
        """Validate configuration after initialization"""
        self.validate()

    def validate(self):
        """Validate configuration settings"""
        errors = []

        # Database validation
        if not self.database.uri:
            errors.append("Database URI is required")
        if not self.database.name:
            errors.append("Database name is required")

        # Redis validation
        if not self.redis.host:
            errors.append("Redis host is required")
        if not (1 <= self.redis.port <= 65535):
            errors.append("Redis port must be between 1 and 65535")

        # Messaging validation
        if self.messaging.provider_name == "twilio":
            if not self.messaging.twilio_account_sid or not self.messaging.twilio_auth_token:
                errors.append("Twilio credentials are required when using the Twilio provider")
            if not self.messaging.twilio_from_number:
                errors.append("Twilio sender number is required when using the Twilio provider")
        elif self.environment == "production" and self.messaging.provider_name == "log":
            errors.append("The log SMS provider cannot be used in production")

        # Matching and performance validation
        if self.matching.radius_meters <= 0:
            errors.append("Match radius must be positive")
        if not (1 <= self.matching.geohash_precision <= 22):
            errors.append("Geohash precision must be between 1 and 22")
        if self.performance.dispatch_max_concurrency < 1:
            errors.append("Dispatch concurrency must be at least 1")
        if self.performance.delivery_claim_ttl_seconds <= 0:
            errors.append("Delivery claim TTL must be positive")
        if self.performance.lifecycle_max_attempts < 1:
            errors.append("Lifecycle attempts must be at least 1")
        if self.performance.retry_max_attempts < 1:
            errors.append("Retry attempts must be at least 1")

        if errors:
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary (for logging/debugging)"""
        config_dict = {}
        for field_name, field_value in self.__dict__.items():
            if hasattr(field_value, '__dict__'):
                config_dict[field_name] = field_value.__dict__.copy()
                # Mask sensitive values
                if field_name == 'messaging':
                    if config_dict[field_name].get('twilio_auth_token'):
                        config_dict[field_name]['twilio_auth_token'] = '***masked***'
                elif field_name == 'redis':
                    if config_dict[field_name].get('password'):
                        config_dict[field_name]['password'] = '***masked***'
            else:
                config_dict[field_name] = field_value
        return config_dict


@lru_cache(maxsize=1)
def get_config() -> ApplicationConfig:
    """
    Get application configuration singleton.
    Uses LRU cache to ensure same instance is returned.
    """
    config = ApplicationConfig()
    logger.info(f"Configuration loaded for environment: {config.environment}")
    return config


# Convenience functions for common config access patterns
def get_database_config() -> DatabaseConfig:
    """Get database configuration"""
    return get_config().database


def get_redis_config() -> RedisConfig:
    """Get Redis configuration"""
    return get_config().redis


def get_messaging_config() -> MessagingConfig:
    """Get messaging configuration"""
    return get_config().messaging


def get_matching_config() -> MatchingConfig:
    """Get matching configuration"""
    return get_config().matching


def get_performance_config() -> PerformanceConfig:
    """Get performance configuration"""
    return get_config().performance


def is_production() -> bool:
    """Check if running in production environment"""
    return get_config().environment.lower() == "production"
