"""
Fire-and-forget notification hooks (email service collaborator).

Hooks run after the core write is committed. Webhook delivery happens on a
background worker pool: the hook returns as soon as the message is queued, and
delivery failures are logged and never propagate.
"""
import logging
from concurrent.futures import Executor, ThreadPoolExecutor, wait
from typing import Dict, Optional

import httpx

from ..core.config import settings

logger = logging.getLogger(__name__)


class NotificationService:
    """Posts notification messages to the configured email webhook."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: Optional[int] = None,
        executor: Optional[Executor] = None,
    ):
        self.webhook_url = webhook_url if webhook_url is not None else settings.NOTIFICATION_WEBHOOK_URL
        self.timeout = timeout or settings.NOTIFICATION_TIMEOUT
        self.executor = executor or ThreadPoolExecutor(
            max_workers=settings.NOTIFICATION_WORKERS, thread_name_prefix="notify",
        )
        self._pending = set()

    def _send(self, message: Dict) -> None:
        if not self.webhook_url:
            logger.info("Notification (%s) to %s: %s", message["event"], message["to"], message["subject"])
            return
        future = self.executor.submit(self._deliver, message)
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every queued delivery has finished."""
        wait(list(self._pending), timeout=timeout)

    def _deliver(self, message: Dict) -> None:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(self.webhook_url, json=message)
                resp.raise_for_status()
        except Exception as exc:
            logger.warning("Notification %s to %s failed: %s", message.get("event"), message.get("to"), exc)

    # ── hooks ────────────────────────────────────────────────────────────────

    def on_connection_requested(self, patient, provider) -> None:
        self._send({
            "event": "connection_requested",
            "to": patient.email,
            "subject": "New Health Provider Connection Request",
            "body": (
                f"Health provider {provider.name} has requested to connect with you. "
                f"Review the request at {settings.CLIENT_URL}/patient/connections"
            ),
        })

    def on_patient_invited(self, email: str, provider) -> None:
        self._send({
            "event": "patient_invited",
            "to": email,
            "subject": "Invitation to Join Onus Health Records",
            "body": (
                f"Health provider {provider.name} has added you as a patient. Create your account at "
                f"{settings.CLIENT_URL}/signup?role=patient&provider={provider.id}"
            ),
        })

    def on_connection_status_changed(self, connection, patient, provider) -> None:
        self._send({
            "event": "connection_status_changed",
            "to": provider.email,
            "subject": "Connection Request Update",
            "body": f"Patient {patient.name} set your connection to '{connection.status}'.",
        })

    def on_record_created(self, patient, provider, record_type: str) -> None:
        self._send({
            "event": "record_created",
            "to": patient.email,
            "subject": "New Medical Record Added to Your Profile",
            "body": (
                f"Health provider {provider.name} has added a new {record_type} record to your health profile."
            ),
        })

    def on_email_verification_requested(self, user, token: str) -> None:
        self._send({
            "event": "email_verification_requested",
            "to": user.email,
            "subject": "Verify Your Email Address",
            "body": f"Welcome {user.name}. Verify your email at {settings.CLIENT_URL}/verify-email/{token}",
        })

    def on_password_reset_requested(self, user, token: str) -> None:
        self._send({
            "event": "password_reset_requested",
            "to": user.email,
            "subject": "Reset Your Onus Password",
            "body": (
                f"Reset your password at {settings.CLIENT_URL}/reset-password?token={token}. "
                f"This link expires in {settings.PASSWORD_RESET_EXPIRE_MINUTES} minutes. "
                "If you did not request a reset, ignore this email."
            ),
        })

    def on_provider_registered(self, provider) -> None:
        self._send({
            "event": "provider_registered",
            "to": "admins",
            "subject": "New Provider Verification Request",
            "body": f"Provider {provider.name} ({provider.email}) is awaiting verification.",
        })

    def on_provider_verification_changed(self, provider, status: str, reason: Optional[str] = None) -> None:
        body = f"Your provider account has been {status}."
        if reason:
            body += f" Reason: {reason}"
        self._send({
            "event": "provider_verification_changed",
            "to": provider.email,
            "subject": "Provider Verification Update",
            "body": body,
        })


notifications = NotificationService()
