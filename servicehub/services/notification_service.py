"""
Customer notification hooks for service request events.

Delivery itself belongs to an external collaborator; this module only shapes
the messages and hands them to a provider. Providers report success as a
bool and never raise, so a failed email can not block a lifecycle change.
"""
import smtplib
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import anyio

from servicehub.lib.logging import get_logger
from servicehub.lib.settings import settings
from servicehub.models.service_requests import ServiceRequest


logger = get_logger(__name__)


class NotificationProvider(ABC):
    """
    Abstract base class for notification delivery providers.
    """

    @abstractmethod
    async def send(
        self,
        to: str,
        subject: str,
        message: str,
    ) -> bool:
        """
        Send a notification.

        Returns:
            True if sent successfully, False otherwise
        """
        pass


class ConsoleEmailProvider(NotificationProvider):
    """
    Console provider for development/testing.
    Logs messages instead of sending them.
    """

    async def send(self, to: str, subject: str, message: str) -> bool:
        print("\n" + "=" * 60)
        print(f"✉️  Email to {to}: {subject}")
        print(f"   {message}")
        print("=" * 60 + "\n")
        logger.info("Email logged to console", extra={"to": to, "subject": subject})
        return True


class SMTPEmailProvider(NotificationProvider):
    """
    SMTP email provider.
    Requires SMTP_USERNAME and SMTP_PASSWORD.
    """

    def __init__(self):
        if not settings.smtp_username or not settings.smtp_password:
            raise ValueError(
                "SMTP credentials not configured. "
                "Set SMTP_USERNAME and SMTP_PASSWORD environment variables."
            )
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_username = settings.smtp_username
        self.smtp_password = settings.smtp_password
        self.from_email = settings.smtp_from_email or settings.smtp_username
        self.from_name = settings.smtp_from_name

    def _deliver(self, to: str, subject: str, message: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to
        msg.attach(MIMEText(message, "plain"))

        with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
            server.starttls()
            server.login(self.smtp_username, self.smtp_password)
            server.send_message(msg)

    async def send(self, to: str, subject: str, message: str) -> bool:
        try:
            await anyio.to_thread.run_sync(self._deliver, to, subject, message)
            logger.info("Email sent", extra={"to": to, "subject": subject})
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email: {e}", extra={"to": to})
            return False


def _location(request: ServiceRequest) -> str:
    return ", ".join(part for part in (request.address, request.city, request.state, request.zip) if part)


def _dollars(cents: int) -> str:
    return f"${cents / 100:,.2f}"


class NotificationService:
    """
    Builds customer-facing messages for lifecycle and payment events.

    Requests without an email address are skipped.
    """

    def __init__(self, provider: Optional[NotificationProvider] = None):
        self.provider = provider or self._create_provider()

    @staticmethod
    def _create_provider() -> NotificationProvider:
        if settings.notification_provider == "email":
            return SMTPEmailProvider()
        return ConsoleEmailProvider()

    async def _send(self, request: ServiceRequest, subject: str, message: str) -> bool:
        if not request.email:
            logger.info("No customer email, skipping notification", extra={"request_id": str(request.id)})
            return False
        try:
            return await self.provider.send(request.email, subject, message)
        except Exception as e:
            logger.error(
                f"Notification delivery failed: {e}",
                extra={"request_id": str(request.id), "subject": subject},
            )
            return False

    async def send_schedule_confirmation(self, request: ServiceRequest) -> bool:
        when = request.scheduled_at.strftime("%A, %B %d, %Y at %I:%M %p") if request.scheduled_at else "soon"
        return await self._send(
            request,
            f"Your {request.service} service is scheduled",
            f"Hi {request.name}, your {request.service} service is scheduled for {when} "
            f"at {_location(request)}.",
        )

    async def send_completion_notice(self, request: ServiceRequest) -> bool:
        message = f"Hi {request.name}, your {request.service} service at {_location(request)} has been completed."
        if request.completion_notes:
            message += f" Notes from our team: {request.completion_notes}"
        return await self._send(request, f"Your {request.service} service is complete", message)

    async def send_rejection_notice(self, request: ServiceRequest) -> bool:
        return await self._send(
            request,
            f"Update on your {request.service} request",
            f"Hi {request.name}, we are unable to fulfil your {request.service} request "
            f"(reference {request.id}). Reason: {request.rejection_reason or 'No specific reason provided'}",
        )

    async def send_payment_receipt(self, request: ServiceRequest) -> bool:
        return await self._send(
            request,
            f"Payment received for {request.service}",
            f"Hi {request.name}, we received your payment of {_dollars(request.amount_paid)} "
            f"for {request.service} (reference {request.id}).",
        )

    async def send_refund_notice(self, request: ServiceRequest, refunded_cents: int) -> bool:
        return await self._send(
            request,
            f"Refund issued for {request.service}",
            f"Hi {request.name}, a refund of {_dollars(refunded_cents)} has been issued "
            f"for {request.service} (reference {request.id}).",
        )


_notification_service: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    """Get the process-wide notification service."""
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService()
    return _notification_service
