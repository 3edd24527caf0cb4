"""Post-commit event notifications: webhooks and email."""

import asyncio
import hashlib
import hmac
import json
import logging
import threading
import urllib.error
import urllib.request
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from subca.models.config import NotificationSettings, WebhookSettings
from subca.models.notification import (
    NotificationChannel,
    NotificationEvent,
    NotificationResult,
    NotificationStatus,
)
from subca.services.smtp_service import SMTPService

logger = logging.getLogger("subca")

SIGNATURE_HEADER = "X-SubCA-Signature"
TEMPLATE_DIR = Path(__file__).parent.parent / "templates" / "email"


class NotificationService:
    """
    Fire-and-forget dispatcher for committed events.

    Deliveries run on a thread pool. A failed delivery is logged and recorded
    in :attr:`history`; it never reaches the caller that published the event.
    """

    def __init__(
        self,
        settings: NotificationSettings,
        smtp_service: Optional[SMTPService] = None,
        template_dir: Path = TEMPLATE_DIR,
    ):
        """Initialize notification service.

        Args:
            settings: Notification settings
            smtp_service: SMTP service used for email delivery
            template_dir: Directory holding the email templates
        """
        self.settings = settings
        self.smtp_service = smtp_service
        self.history: List[NotificationResult] = []
        self._lock = threading.Lock()
        self._pending: set = set()
        self._executor = ThreadPoolExecutor(max_workers=settings.max_workers, thread_name_prefix="subca-notify")
        self._shutdown = False
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
        )

    def publish(self, event: NotificationEvent) -> None:
        """
        Queue deliveries for an event. Never raises for delivery problems.

        Args:
            event: Committed event
        """
        if not self.settings.enabled or self._shutdown:
            return
        if event.event not in self.settings.events:
            logger.debug(f"Notification skipped, event not subscribed: {event.event}")
            return

        for webhook in self.settings.webhooks:
            if webhook.events and event.event not in webhook.events:
                continue
            self._submit(self.send_webhook, webhook, event)

        if self.settings.recipients and self.smtp_service and self.smtp_service.settings.enabled:
            self._submit(self.send_email, event)

    def _submit(self, fn, *args) -> None:
        try:
            future = self._executor.submit(self._deliver, fn, *args)
        except RuntimeError:
            logger.warning(f"Notification executor shut down, dropping {fn.__name__}")
            return
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)

    def _deliver(self, fn, *args) -> NotificationResult:
        result: NotificationResult = fn(*args)
        with self._lock:
            self.history.append(result)
        if result.status == NotificationStatus.FAILED:
            logger.warning(f"Notification to {result.target} failed: {result.error}")
        return result

    def _on_done(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        exc = future.exception()
        if exc is not None:
            logger.error(f"Notification worker crashed: {exc!r}")

    @staticmethod
    def sign_payload(secret: str, payload: bytes) -> str:
        """HMAC-SHA256 signature header value for a webhook body."""
        digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
        return f"sha256={digest}"

    def send_webhook(self, webhook: WebhookSettings, event: NotificationEvent) -> NotificationResult:
        """
        POST an event as JSON to a webhook.

        Args:
            webhook: Target endpoint settings
            event: Event to deliver

        Returns:
            Delivery result
        """
        payload = json.dumps(event.model_dump(mode="json")).encode("utf-8")
        headers = {"Content-Type": "application/json", "User-Agent": "subca-notifier"}
        if webhook.secret:
            headers[SIGNATURE_HEADER] = self.sign_payload(webhook.secret, payload)

        req = urllib.request.Request(webhook.url, data=payload, method="POST", headers=headers)
        try:
            with urllib.request.urlopen(req, timeout=webhook.timeout_seconds) as resp:
                resp.read()
        except urllib.error.HTTPError as e:
            return self._failed(NotificationChannel.WEBHOOK, webhook.url, f"HTTP {e.code}")
        except (urllib.error.URLError, OSError) as e:
            return self._failed(NotificationChannel.WEBHOOK, webhook.url, str(e))

        logger.info(f"Webhook delivered: {event.event} -> {webhook.url}")
        return NotificationResult(channel=NotificationChannel.WEBHOOK, target=webhook.url, status=NotificationStatus.SENT)

    def render(self, event: NotificationEvent) -> tuple[str, str, str]:
        """Render (subject, html_body, text_body) for an event."""
        variables = event.model_dump(mode="json")
        subject = f"[SubCA] {event.summary}"
        html_body = self.jinja_env.get_template("event.html").render(**variables)
        text_body = self.jinja_env.get_template("event.txt").render(**variables)
        return subject, html_body, text_body

    def send_email(self, event: NotificationEvent) -> NotificationResult:
        """
        Email an event to the configured recipients.

        Runs inside a worker thread, so the async SMTP client gets its own loop.
        """
        target = ", ".join(self.settings.recipients)
        subject, html_body, text_body = self.render(event)
        results = asyncio.run(
            self.smtp_service.send_bulk_email(self.settings.recipients, subject, html_body, text_body)
        )
        errors = [f"{recipient}: {error}" for recipient, ok, _, error in results if not ok]
        if errors:
            return self._failed(NotificationChannel.EMAIL, target, "; ".join(errors))
        return NotificationResult(channel=NotificationChannel.EMAIL, target=target, status=NotificationStatus.SENT)

    @staticmethod
    def _failed(channel: NotificationChannel, target: str, error: str) -> NotificationResult:
        return NotificationResult(channel=channel, target=target, status=NotificationStatus.FAILED, error=error)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for queued deliveries to finish."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def shutdown(self, wait_for_pending: bool = True) -> None:
        """Stop accepting events and release the worker threads."""
        self._shutdown = True
        self._executor.shutdown(wait=wait_for_pending)
