"""Local alert presenters: log, Twilio SMS and SMTP email."""

import logging
import smtplib
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .config import AlertConfig, SmtpConfig, TwilioConfig
from .errors import PermissionDenied

logger = logging.getLogger(__name__)

try:
    from twilio.base.exceptions import TwilioRestException
    from twilio.rest import Client
    TWILIO_AVAILABLE = True
except ImportError:
    TWILIO_AVAILABLE = False


class AlertPresenter(ABC):
    """Abstract local alert primitive. Fire-and-forget; nothing is returned."""

    @abstractmethod
    def present(self, title: str, body: str, message_id: str) -> None:
        """
        Surface an alert for a message.

        Raises:
            PermissionDenied: If alerts cannot be delivered at all.
        """
        pass


class LogAlertPresenter(AlertPresenter):
    """Writes alerts to the log."""

    def __init__(self, alert_logger: logging.Logger = None):
        self.alert_logger = alert_logger or logger

    def present(self, title: str, body: str, message_id: str) -> None:
        self.alert_logger.warning(f"ALERT [{message_id}] {title}: {body}")


class SmsAlertPresenter(AlertPresenter):
    """Sends alerts as SMS through Twilio."""

    def __init__(self, config: TwilioConfig):
        if not TWILIO_AVAILABLE:
            raise PermissionDenied(
                "Twilio library not installed. Install with: pip install twilio"
            )
        self.config = config
        self.client = Client(config.account_sid, config.auth_token)

    def present(self, title: str, body: str, message_id: str) -> None:
        text = f"{title}\n\n{body}".strip()
        if not text:
            logger.info("Alert is empty; not sending SMS.")
            return
        try:
            message_obj = self.client.messages.create(
                body=text,
                from_=self.config.from_number,
                to=self.config.to_number,
            )
        except TwilioRestException as e:
            if e.code == 20003 or e.status == 401:
                logger.error(
                    "Twilio authentication failed (Error 20003).\n"
                    "Check TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN; credentials may have been regenerated.\n"
                    f"Current Account SID (first 10 chars): {(self.config.account_sid or '')[:10]}..."
                )
                raise PermissionDenied(f"Twilio rejected credentials: {e}") from e
            logger.error(f"Failed to send SMS for message {message_id}: {e}")
            raise
        logger.info(f"SMS alert sent for message {message_id}. SID: {message_obj.sid}")


class EmailAlertPresenter(AlertPresenter):
    """Sends alerts as plain-text email over SMTP."""

    def __init__(self, config: SmtpConfig, timeout_seconds: float = 30):
        self.config = config
        self.timeout_seconds = timeout_seconds

    def _build(self, title: str, body: str, message_id: str) -> MIMEMultipart:
        msg = MIMEMultipart()
        msg["From"] = self.config.from_email or self.config.username
        msg["To"] = self.config.to_email
        msg["Subject"] = title or "Push notification"
        msg["X-Push-Message-Id"] = message_id
        msg.attach(MIMEText(body or "", "plain"))
        return msg

    def present(self, title: str, body: str, message_id: str) -> None:
        msg = self._build(title, body, message_id)
        host, port = self.config.host, self.config.port
        logger.debug(f"Connecting to SMTP server: {host}:{port}")
        try:
            if port == 465:
                server = smtplib.SMTP_SSL(host, port, timeout=self.timeout_seconds)
            else:
                server = smtplib.SMTP(host, port, timeout=self.timeout_seconds)
                server.starttls()
            try:
                server.login(self.config.username, self.config.password)
                server.send_message(msg)
            finally:
                server.quit()
        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                f"SMTP authentication failed for {self.config.username}. "
                f"For Gmail use an App Password. Error details: {e}"
            )
            raise PermissionDenied(f"SMTP login refused: {e}") from e
        except (smtplib.SMTPException, ConnectionError, TimeoutError) as e:
            logger.error(f"Failed to send alert email for message {message_id}: {e}")
            raise
        logger.info(f"Email alert sent to {self.config.to_email} for message {message_id}")


def build_presenter(config: AlertConfig) -> AlertPresenter:
    """
    Create the presenter for the configured alert method.

    Raises:
        PermissionDenied: If the method's library is unavailable.
    """
    if config.method == "sms":
        return SmsAlertPresenter(config.twilio)
    if config.method == "email":
        return EmailAlertPresenter(config.smtp)
    return LogAlertPresenter()
