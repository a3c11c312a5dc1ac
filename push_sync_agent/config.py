"""Configuration management."""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3001"


@dataclass
class ApiConfig:
    """Backend HTTP API configuration."""
    base_url: str
    push_messages_endpoint: str
    device_register_endpoint: str
    immediate_notification_endpoint: str
    request_timeout: float = 10.0   # seconds, bounds every message fetch
    health_timeout: float = 30.0    # longer, the backend may be cold-starting

    @property
    def health_endpoint(self) -> str:
        return f"{self.base_url}/api/health"

    @property
    def devices_endpoint(self) -> str:
        return f"{self.base_url}/api/devices"

    @property
    def stats_endpoint(self) -> str:
        return f"{self.base_url}/api/push-messages/stats"

    def endpoints(self) -> Dict[str, str]:
        return {
            "pushMessages": self.push_messages_endpoint,
            "deviceRegister": self.device_register_endpoint,
            "immediateNotification": self.immediate_notification_endpoint,
            "health": self.health_endpoint,
            "devices": self.devices_endpoint,
            "stats": self.stats_endpoint,
        }


@dataclass
class RealtimeConfig:
    """Realtime (Socket.IO) event stream configuration."""
    enabled: bool
    url: str
    event_name: str = "statusUpdate"


@dataclass
class PollConfig:
    """Polling and alert decision configuration."""
    interval_seconds: float = 60.0
    alert_window_seconds: float = 120.0
    alert_status: str = "Sent"  # status that makes a message alert-worthy


@dataclass
class DeviceConfig:
    """Identity this client registers with the backend."""
    push_token: str
    platform: str = "cli"
    app_version: str = "1.0.0"
    user_id: Optional[str] = None
    health_profile: Dict[str, str] = field(default_factory=dict)


@dataclass
class TwilioConfig:
    """Twilio SMS configuration."""
    account_sid: Optional[str] = None
    auth_token: Optional[str] = None
    from_number: Optional[str] = None
    to_number: Optional[str] = None


@dataclass
class SmtpConfig:
    """SMTP configuration for email alerts."""
    host: Optional[str] = None
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    from_email: Optional[str] = None
    to_email: Optional[str] = None


@dataclass
class AlertConfig:
    """Local alert delivery configuration."""
    method: str = "log"  # "log", "sms" or "email"
    twilio: TwilioConfig = field(default_factory=TwilioConfig)
    smtp: SmtpConfig = field(default_factory=SmtpConfig)


@dataclass
class AppConfig:
    """Complete application configuration."""
    api: ApiConfig
    realtime: RealtimeConfig
    poll: PollConfig
    device: DeviceConfig
    alerts: AlertConfig
    environment: str = "production"
    debug: bool = False


def _parse_bool_env(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_float_env(key: str, default: float) -> float:
    """Parse a positive number from an environment variable."""
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {value!r}")
    if parsed <= 0:
        raise ValueError(f"{key} must be positive, got {value!r}")
    return parsed


def _required_for_method(alerts: AlertConfig) -> List[str]:
    """Names of environment variables the selected alert method still needs."""
    missing = []
    if alerts.method == "sms":
        if not alerts.twilio.account_sid:
            missing.append("TWILIO_ACCOUNT_SID")
        if not alerts.twilio.auth_token:
            missing.append("TWILIO_AUTH_TOKEN")
        if not alerts.twilio.from_number:
            missing.append("TWILIO_FROM_NUMBER")
        if not alerts.twilio.to_number:
            missing.append("TWILIO_TO_NUMBER")
    elif alerts.method == "email":
        if not alerts.smtp.host:
            missing.append("SMTP_HOST")
        if not alerts.smtp.username:
            missing.append("SMTP_USERNAME")
        if not alerts.smtp.password:
            missing.append("SMTP_PASSWORD")
        if not alerts.smtp.to_email:
            missing.append("ALERT_EMAIL_TO")
    return missing


def load_config(alert_method: Optional[str] = None) -> AppConfig:
    """
    Load configuration from environment variables.

    Args:
        alert_method: Overrides ALERT_METHOD when given (used by the CLI).

    Raises:
        ValueError: If a value is malformed or a setting required by the
            selected alert method is missing.
    """
    base_url = os.getenv("PUSH_API_BASE_URL", DEFAULT_BASE_URL).rstrip("/")

    api = ApiConfig(
        base_url=base_url,
        push_messages_endpoint=(
            os.getenv("PUSH_MESSAGES_ENDPOINT") or f"{base_url}/api/push-messages"
        ),
        device_register_endpoint=(
            os.getenv("DEVICE_REGISTER_ENDPOINT") or f"{base_url}/api/device/register"
        ),
        immediate_notification_endpoint=(
            os.getenv("IMMEDIATE_NOTIFICATION_ENDPOINT")
            or f"{base_url}/api/push-messages/immediate"
        ),
        request_timeout=_parse_float_env("REQUEST_TIMEOUT", 10.0),
        health_timeout=_parse_float_env("HEALTH_TIMEOUT", 30.0),
    )

    realtime = RealtimeConfig(
        enabled=_parse_bool_env("REALTIME_ENABLED", True),
        url=os.getenv("REALTIME_URL", base_url),
        event_name=os.getenv("REALTIME_EVENT", "statusUpdate"),
    )

    poll = PollConfig(
        interval_seconds=_parse_float_env("POLL_INTERVAL_SECONDS", 60.0),
        alert_window_seconds=_parse_float_env("ALERT_WINDOW_SECONDS", 120.0),
        alert_status=os.getenv("ALERT_STATUS", "Sent"),
    )

    # No platform push token outside a device; simulate one like the web client does
    push_token = os.getenv("PUSH_TOKEN") or f"cli-simulator-token-{int(time.time() * 1000)}"
    device = DeviceConfig(
        push_token=push_token,
        platform=os.getenv("DEVICE_PLATFORM", "cli"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        user_id=os.getenv("DEVICE_USER_ID") or None,
    )

    method = (alert_method or os.getenv("ALERT_METHOD", "log")).lower()
    if method not in ("log", "sms", "email"):
        raise ValueError(f"ALERT_METHOD must be one of log, sms, email; got {method!r}")

    smtp_username = os.getenv("SMTP_USERNAME")
    alerts = AlertConfig(
        method=method,
        twilio=TwilioConfig(
            account_sid=os.getenv("TWILIO_ACCOUNT_SID"),
            auth_token=os.getenv("TWILIO_AUTH_TOKEN"),
            from_number=os.getenv("TWILIO_FROM_NUMBER"),
            to_number=os.getenv("TWILIO_TO_NUMBER"),
        ),
        smtp=SmtpConfig(
            host=os.getenv("SMTP_HOST"),
            port=int(_parse_float_env("SMTP_PORT", 587)),
            username=smtp_username,
            # Remove spaces from password (app passwords are often shown grouped)
            password=(os.getenv("SMTP_PASSWORD") or "").replace(" ", "") or None,
            from_email=os.getenv("ALERT_EMAIL_FROM") or smtp_username,
            to_email=os.getenv("ALERT_EMAIL_TO"),
        ),
    )

    missing = _required_for_method(alerts)
    if missing:
        raise ValueError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    return AppConfig(
        api=api,
        realtime=realtime,
        poll=poll,
        device=device,
        alerts=alerts,
        environment=os.getenv("APP_ENV", "production"),
        debug=_parse_bool_env("DEBUG", False),
    )


def _mask(value: Optional[str]) -> str:
    if not value:
        return "(unset)"
    return f"{value[:6]}..."


def log_configuration(config: AppConfig) -> None:
    """Log the effective configuration at startup, secrets masked."""
    logger.info("App configuration:")
    logger.info(f"   Environment: {config.environment}")
    logger.info(f"   Debug mode: {config.debug}")
    logger.info(f"   Backend URL: {config.api.base_url}")
    logger.info(f"   Push token: {_mask(config.device.push_token)}")
    logger.info(f"   Poll interval: {config.poll.interval_seconds:g}s")
    logger.info(
        f"   Realtime: {'enabled' if config.realtime.enabled else 'disabled'}"
        f" ({config.realtime.url})"
    )
    logger.info(f"   Alert method: {config.alerts.method}")
    logger.info("API endpoints:")
    for key, url in config.api.endpoints().items():
        logger.info(f"   {key}: {url}")
