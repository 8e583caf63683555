"""Notification handlers for different delivery channels."""

import os
import smtplib
from email.message import EmailMessage
from typing import Optional, Protocol

import requests
from fulfillment_service.schemas import Notification

from .logger import logger


class NotificationChannel(Protocol):
    """Protocol defining the interface for notification channels."""

    def send(self, notification: Notification) -> bool:
        """Send a notification through this channel.

        Args:
            notification: The notification to send

        Returns:
            bool: True if sent successfully, False otherwise
        """
        ...


class EmailNotificationChannel:
    """Email channel; sends over SMTP when a host is configured, otherwise only logs."""

    def __init__(
        self,
        from_email: Optional[str] = None,
        smtp_host: Optional[str] = None,
        smtp_port: Optional[int] = None,
        smtp_user: Optional[str] = None,
        smtp_pass: Optional[str] = None,
    ):
        """Initialize the email channel with SMTP configuration."""
        self.from_email = from_email or os.getenv("FROM_EMAIL", "notifications@orders.example.com")
        self.smtp_host = smtp_host or os.getenv("SMTP_HOST")
        self.smtp_port = smtp_port or int(os.getenv("SMTP_PORT", "587"))
        self.smtp_user = smtp_user if smtp_user is not None else os.getenv("SMTP_USER", "")
        self.smtp_pass = smtp_pass if smtp_pass is not None else os.getenv("SMTP_PASS", "")

    def send(self, notification: Notification) -> bool:
        """Send an email notification.

        Args:
            notification: The notification to send

        Returns:
            bool: True if sent successfully, False otherwise
        """
        if not notification.recipient or "@" not in notification.recipient:
            logger.warning(f"No email address for notification {notification.notification_id}")
            return False

        if not self.smtp_host:
            logger.info(
                f"[STUB] Email sent | from={self.from_email} | to={notification.recipient} | "
                f"subject={notification.subject} | notification_id={notification.notification_id}"
            )
            return True

        msg = EmailMessage()
        msg.set_content(notification.message)
        msg["Subject"] = notification.subject
        msg["From"] = self.from_email
        msg["To"] = notification.recipient

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as server:
                server.starttls()
                if self.smtp_user:
                    server.login(self.smtp_user, self.smtp_pass)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email: {e}")
            return False

        logger.info(f"Email sent successfully: {notification.notification_id}")
        return True


class SMSNotificationChannel:
    """SMS channel posting to an HTTP gateway; logs only when no gateway is configured."""

    def __init__(self, api_url: Optional[str] = None, api_key: str = "", timeout: float = 5.0):
        self.sms_api_url = api_url
        self.sms_api_key = api_key
        self.timeout = timeout

    def send(self, notification: Notification) -> bool:
        """Send an SMS notification.

        Args:
            notification: The notification to send; ``recipient`` holds the phone number

        Returns:
            bool: True if sent successfully, False otherwise
        """
        if not notification.recipient:
            logger.warning(f"No phone number for notification {notification.notification_id}")
            return False

        if not self.sms_api_url:
            logger.info(
                f"[STUB] Would send SMS | to={notification.recipient} | message={notification.subject}: {notification.message}"
            )
            return True

        try:
            response = requests.post(
                self.sms_api_url,
                headers={"Authorization": f"Bearer {self.sms_api_key}"},
                json={"to": notification.recipient, "message": f"{notification.subject}: {notification.message}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to send SMS: {e}")
            return False

        logger.info(f"SMS sent successfully: {notification.notification_id}")
        return True


class NotificationHandler:
    """Routes a notification to the channel it names."""

    def __init__(self, channels: Optional[dict[str, NotificationChannel]] = None):
        """Initialize notification channels."""
        self.channels = channels if channels is not None else {
            "EMAIL": EmailNotificationChannel(),
            "SMS": SMSNotificationChannel(os.getenv("SMS_API_URL"), os.getenv("SMS_API_KEY", "")),
        }

    def send_notification(self, notification: Notification) -> bool:
        """Send a notification through its channel.

        Args:
            notification: The notification to send

        Returns:
            bool: True if the channel accepted it
        """
        channel = self.channels.get(notification.channel.upper())
        if channel is None:
            logger.error(
                f"Unknown channel {notification.channel} for notification {notification.notification_id}"
            )
            return False
        return channel.send(notification)
