"""
notify/mailer.py -- Transactional email delivery.

The auth services never send mail. They return Notification values
(recipient, subject, template_name, variables) and the API layer hands them
to a NotificationService after the response is decided.

SmtpNotifier renders notify/templates/<template_name>.html with Jinja2
(autoescape on -- names and IPs are user-controlled) and sends it with
smtplib. Transport failures become DependencyError.

dispatch() is what background tasks call: it sends each effect and logs
failures instead of raising, because a lost welcome email must not turn a
successful registration into an error.

Layer rule: notify/ may import from auth/ (models, errors) and core/, never
from api/.
"""

from __future__ import annotations

import logging
import smtplib
from collections.abc import Iterable
from email.message import EmailMessage
from pathlib import Path
from typing import Protocol

from jinja2 import Environment, FileSystemLoader, select_autoescape

from auth.errors import DependencyError
from auth.models import Notification
from core.config import Settings

logger = logging.getLogger("progresstrack.notify")

_TEMPLATE_DIR = Path(__file__).parent / "templates"


class NotificationService(Protocol):
    def send(self, notification: Notification) -> None: ...


class SmtpNotifier:
    """Render and send notifications over SMTP.

    With no SMTP_HOST configured, debug mode logs each message and drops it
    so local development works without a mail server. Outside debug mode an
    unconfigured host is a delivery failure like any other.
    """

    def __init__(self, settings: Settings) -> None:
        self._host = settings.smtp_host
        self._port = settings.smtp_port
        self._user = settings.smtp_user
        self._password = settings.smtp_password
        self._use_tls = settings.smtp_use_tls
        self._timeout = settings.smtp_timeout_seconds
        self._sender = settings.email_from
        self._debug = settings.debug
        self._env = Environment(
            loader=FileSystemLoader(str(_TEMPLATE_DIR)),
            autoescape=select_autoescape(["html"]),
        )

    def render(self, notification: Notification) -> str:
        template = self._env.get_template(f"{notification.template_name}.html")
        return template.render(**notification.variables)

    def build_message(self, notification: Notification) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = notification.recipient
        message["Subject"] = notification.subject
        message.set_content(self.render(notification), subtype="html")
        return message

    def send(self, notification: Notification) -> None:
        message = self.build_message(notification)
        if not self._host:
            if self._debug:
                logger.info("SMTP not configured; dropping '%s' email", notification.template_name)
                return
            logger.error("SMTP_HOST is not set; cannot send '%s' email", notification.template_name)
            raise DependencyError("Email could not be sent. Please try again.")
        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
                if self._use_tls:
                    server.starttls()
                if self._user:
                    server.login(self._user, self._password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP delivery of '%s' failed: %s", notification.template_name, exc)
            raise DependencyError("Email could not be sent. Please try again.") from exc
        logger.info("Sent '%s' email", notification.template_name)


def dispatch(notifier: NotificationService, effects: Iterable[Notification]) -> None:
    """Deliver post-commit effects. Failures are logged, never raised."""
    for notification in effects:
        try:
            notifier.send(notification)
        except Exception:  # noqa: BLE001 -- a failed side effect must not escape
            logger.exception("Notification '%s' could not be delivered", notification.template_name)
