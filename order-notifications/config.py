"""Configuration management for the order notification service."""

import os
from typing import List
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    """Application configuration class."""

    # Database settings
    DB_HOST: str = os.getenv("DB_HOST", "localhost")
    DB_PORT: int = int(os.getenv("DB_PORT", "3306"))
    DB_USER: str = os.getenv("DB_USER", "root")
    DB_PASSWORD: str = os.getenv("DB_PASSWORD", "")
    DB_NAME: str = os.getenv("DB_NAME", "betty_organic")
    ORDERS_TABLE: str = os.getenv("ORDERS_TABLE", "orders")

    # Server settings
    SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
    SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))

    # Polling settings
    CHANGE_LOG_POLL_INTERVAL: float = float(os.getenv("CHANGE_LOG_POLL_INTERVAL", "0.5"))
    CHANGE_LOG_BATCH_SIZE: int = int(os.getenv("CHANGE_LOG_BATCH_SIZE", "100"))
    HEARTBEAT_INTERVAL: float = float(os.getenv("HEARTBEAT_INTERVAL", "30"))

    # Awaiting-attention statuses
    STATUS_FILTER: List[str] = _split(os.getenv("STATUS_FILTER", "pending,new,processing"))
    STATUS_SUBSTRING_FILTER: List[str] = _split(os.getenv("STATUS_SUBSTRING_FILTER", "pending"))

    # Notification channels
    ENABLE_ORDER_NOTIFICATIONS: bool = os.getenv("ENABLE_ORDER_NOTIFICATIONS", "true").lower() == "true"
    ENABLE_REALTIME_NOTIFICATIONS: bool = os.getenv("ENABLE_REALTIME_NOTIFICATIONS", "true").lower() == "true"
    NOTIFICATION_TOPIC: str = os.getenv("NOTIFICATION_TOPIC", "pending-order-notifications")
    CHANNEL_TIMEOUT: float = float(os.getenv("CHANNEL_TIMEOUT", "15"))
    BROADCAST_TIMEOUT: float = float(os.getenv("BROADCAST_TIMEOUT", "5"))
    DEDUP_WINDOW_SECONDS: float = float(os.getenv("DEDUP_WINDOW_SECONDS", "0"))
    ORDER_WEBHOOK_SECRET: str = os.getenv("ORDER_WEBHOOK_SECRET", "")

    # Messaging provider
    ADMIN_WHATSAPP_NUMBER: str = os.getenv("ADMIN_WHATSAPP_NUMBER", "+251912345678")
    DEFAULT_COUNTRY_CODE: str = os.getenv("DEFAULT_COUNTRY_CODE", "251")
    MESSAGING_PROVIDER: str = os.getenv("MESSAGING_PROVIDER", "manual")
    SEND_TIMEOUT: float = float(os.getenv("SEND_TIMEOUT", "10"))
    AUTH_POLL_INTERVAL: float = float(os.getenv("AUTH_POLL_INTERVAL", "2"))
    AUTH_TIMEOUT: float = float(os.getenv("AUTH_TIMEOUT", "120"))
    RECONNECT_INITIAL_DELAY: float = float(os.getenv("RECONNECT_INITIAL_DELAY", "3"))
    RECONNECT_MAX_DELAY: float = float(os.getenv("RECONNECT_MAX_DELAY", "60"))
    RECONNECT_MAX_ATTEMPTS: int = int(os.getenv("RECONNECT_MAX_ATTEMPTS", "3"))

    # Session bridge (self-hosted WhatsApp Web service)
    WHATSAPP_BRIDGE_URL: str = os.getenv("WHATSAPP_BRIDGE_URL", "http://localhost:3002")

    # WhatsApp Cloud API
    WHATSAPP_ACCESS_TOKEN: str = os.getenv("WHATSAPP_ACCESS_TOKEN", "")
    WHATSAPP_PHONE_NUMBER_ID: str = os.getenv("WHATSAPP_PHONE_NUMBER_ID", "")
    WHATSAPP_API_VERSION: str = os.getenv("WHATSAPP_API_VERSION", "v21.0")
    WHATSAPP_API_BASE_URL: str = os.getenv("WHATSAPP_API_BASE_URL", "https://graph.facebook.com")
    WEBHOOK_VERIFY_TOKEN: str = os.getenv("WEBHOOK_VERIFY_TOKEN", "")
    WHATSAPP_APP_SECRET: str = os.getenv("WHATSAPP_APP_SECRET", "")

    # Message formatting
    STORE_NAME: str = os.getenv("STORE_NAME", "Betty Organic")
    CURRENCY: str = os.getenv("CURRENCY", "ETB")
    STORE_TIMEZONE: str = os.getenv("STORE_TIMEZONE", "Africa/Addis_Ababa")

    # Catch-up query
    PENDING_PAGE_SIZE: int = int(os.getenv("PENDING_PAGE_SIZE", "50"))
    PENDING_SCAN_LIMIT: int = int(os.getenv("PENDING_SCAN_LIMIT", "500"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    def validate(self) -> List[str]:
        """Validate configuration.

        Raises ``ValueError`` listing every error; returns the list of
        non-fatal warnings.
        """
        from messaging import PROVIDER_KINDS
        from messaging.phone import InvalidPhoneNumber, normalize_phone

        errors: List[str] = []
        warnings: List[str] = []

        for field in ["DB_HOST", "DB_USER", "DB_NAME"]:
            if not getattr(self, field):
                errors.append(f"Missing required configuration: {field}")

        if not self.ADMIN_WHATSAPP_NUMBER:
            errors.append("ADMIN_WHATSAPP_NUMBER is required")
        else:
            try:
                normalize_phone(self.ADMIN_WHATSAPP_NUMBER, self.DEFAULT_COUNTRY_CODE)
            except InvalidPhoneNumber as e:
                errors.append(f"ADMIN_WHATSAPP_NUMBER is invalid: {e}")

        if not self.STATUS_FILTER and not self.STATUS_SUBSTRING_FILTER:
            errors.append("STATUS_FILTER must name at least one status")

        provider = self.MESSAGING_PROVIDER
        if provider not in PROVIDER_KINDS:
            errors.append(f"Unknown messaging provider: {provider}")
        elif provider == "cloud_api":
            if not self.WHATSAPP_ACCESS_TOKEN:
                errors.append("WHATSAPP_ACCESS_TOKEN is required for the Cloud API provider")
            elif self.WHATSAPP_ACCESS_TOKEN.startswith("EAA") and len(self.WHATSAPP_ACCESS_TOKEN) < 200:
                warnings.append("WHATSAPP_ACCESS_TOKEN looks like a temporary token")
            if not self.WHATSAPP_PHONE_NUMBER_ID:
                errors.append("WHATSAPP_PHONE_NUMBER_ID is required for the Cloud API provider")
            if not self.WEBHOOK_VERIFY_TOKEN:
                warnings.append("WEBHOOK_VERIFY_TOKEN not set, webhook subscription cannot be verified")
            if not self.WHATSAPP_APP_SECRET:
                warnings.append("WHATSAPP_APP_SECRET not set, webhook signatures cannot be checked")
        elif provider == "session_bridge":
            if not self.WHATSAPP_BRIDGE_URL:
                errors.append("WHATSAPP_BRIDGE_URL is required for the session bridge provider")

        if self.RECONNECT_MAX_ATTEMPTS < 1:
            errors.append("RECONNECT_MAX_ATTEMPTS must be at least 1")
        if self.RECONNECT_INITIAL_DELAY <= 0 or self.RECONNECT_MAX_DELAY < self.RECONNECT_INITIAL_DELAY:
            errors.append("RECONNECT_INITIAL_DELAY must be positive and not exceed RECONNECT_MAX_DELAY")

        if errors:
            raise ValueError(f"Invalid configuration: {'; '.join(errors)}")
        return warnings

# Global configuration instance
config = Config()
