"""Run notifications: message selection and delivery sinks."""

from __future__ import annotations

import logging
import smtplib
from collections.abc import Sequence
from dataclasses import dataclass
from email.mime.text import MIMEText
from typing import Protocol

from rich.console import Console

from promotex.config import PromotionConfig
from promotex.pipeline.types import RunResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    result: RunResult
    subject: str
    body: str


class NotificationSink(Protocol):
    def send(self, notification: Notification) -> None: ...


def build_notification(
    result: RunResult,
    *,
    image_stream: str,
    release_version: str | None,
    run_url: str | None,
    source_tag: str | None = None,
    error_message: str | None = None,
) -> Notification:
    """Pick the message for a terminal RunResult."""
    version = release_version or "unknown"
    link = run_url or "(no run link configured)"

    if result is RunResult.RELEASED:
        return Notification(
            result=result,
            subject=f"Released {image_stream} {version} to production",
            body=(
                f"{image_stream} version {version} was promoted"
                f"{f' from tag {source_tag}' if source_tag else ''} and rolled out successfully.\n\n"
                f"Run details: {link}\n"
            ),
        )

    if result is RunResult.ABORTED:
        return Notification(
            result=result,
            subject=f"Promotion of {image_stream} {version} aborted",
            body=(
                f"Nothing was promoted: source tag {source_tag or 'unknown'} does not exist "
                f"for {image_stream}. Production was not changed.\n\n"
                f"Run details: {link}\n"
            ),
        )

    if result is RunResult.FAILED:
        return Notification(
            result=result,
            subject=f"FAILED: promotion of {image_stream} {version}",
            body=(
                f"Promotion of {image_stream} version {version} failed.\n"
                f"{f'Error: {error_message}' if error_message else ''}\n\n"
                f"Run details: {link}\n"
            ),
        )

    raise ValueError(f"no notification for result {result.value}")


class EmailNotifier:
    """SMTP email sink."""

    def __init__(
        self,
        *,
        smtp_host: str,
        smtp_port: int,
        from_address: str,
        to_addresses: Sequence[str],
        reply_to: str | None = None,
        timeout_seconds: float = 30.0,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.from_address = from_address
        self.to_addresses = list(to_addresses)
        self.reply_to = reply_to
        self.timeout_seconds = timeout_seconds

    def validate_config(self) -> list[str]:
        errors: list[str] = []
        if not self.smtp_host:
            errors.append("smtp_host is required")
        if not self.from_address:
            errors.append("notify_email_from is required")
        if not self.to_addresses:
            errors.append("notify_email_list is required (at least one recipient)")
        return errors

    def build_message(self, notification: Notification) -> MIMEText:
        msg = MIMEText(notification.body, "plain", "utf-8")
        msg["Subject"] = notification.subject
        msg["From"] = self.from_address
        msg["To"] = ", ".join(self.to_addresses)
        if self.reply_to:
            msg["Reply-To"] = self.reply_to
        return msg

    def send(self, notification: Notification) -> None:
        errors = self.validate_config()
        if errors:
            raise RuntimeError(f"email notifier misconfigured: {'; '.join(errors)}")

        message = self.build_message(notification)
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout_seconds) as smtp:
            smtp.send_message(message)
        logger.info("Sent %s notification to %s", notification.result.value, ", ".join(self.to_addresses))


class ConsoleNotifier:
    """Prints the notification; used when no recipients are configured."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def send(self, notification: Notification) -> None:
        style = {
            RunResult.RELEASED: "green",
            RunResult.ABORTED: "yellow",
            RunResult.FAILED: "red",
        }.get(notification.result, "cyan")
        self.console.print(f"[bold {style}]{notification.subject}[/bold {style}]")
        self.console.print(notification.body)


def notifier_from_config(config: PromotionConfig, console: Console | None = None) -> NotificationSink:
    if not config.notify_email_list:
        logger.info("No notification recipients configured; notifications go to the console")
        return ConsoleNotifier(console)
    return EmailNotifier(
        smtp_host=config.smtp_host,
        smtp_port=config.smtp_port,
        from_address=config.notify_email_from or "",
        to_addresses=config.notify_email_list,
        reply_to=config.notify_email_replyto,
    )
