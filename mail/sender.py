"""
mail/sender.py -- Outbound email collaborator.

Contract: send(to, subject, template, data) renders a Jinja2 template from
mail/templates/ and delivers it over SMTP. Any rendering or delivery failure
is raised as DeliveryError -- registration treats it as fatal, so a user is
never told to check an inbox that nothing was sent to.

When SMTP is not configured:
  development -- the message is logged instead of sent (address redacted).
  production  -- DeliveryError. Silently dropping activation mail would strand
                 every new registration.

Template design is out of scope for this service; templates stay minimal.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Protocol

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from auth.errors import DeliveryError
from core.config import Settings

logger = logging.getLogger("coursegate.mail")

_TEMPLATE_DIR = Path(__file__).parent / "templates"


class Mailer(Protocol):
    def send(self, to: str, subject: str, template: str, data: dict) -> None: ...


def redact_email(email: str) -> str:
    """Redact an address for logs: ab***@example.com."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpMailer:
    def __init__(self, settings: Settings, template_dir: Path = _TEMPLATE_DIR) -> None:
        self._settings = settings
        self._env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(["html"]),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._settings.smtp_host and self._settings.smtp_from)

    def render(self, template: str, data: dict) -> str:
        try:
            return self._env.get_template(template).render(**data)
        except TemplateError as exc:
            logger.error("Failed to render email template %s: %s", template, exc)
            raise DeliveryError() from exc

    def send(self, to: str, subject: str, template: str, data: dict) -> None:
        html_body = self.render(template, data)

        if not self.is_configured:
            if self._settings.is_production:
                logger.error("SMTP is not configured; cannot send %r to %s", subject, redact_email(to))
                raise DeliveryError()
            logger.info("SMTP not configured, email to %s not sent: %s", redact_email(to), subject)
            logger.debug("Email body:\n%s", html_body)
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self._settings.smtp_from
        msg["To"] = to
        msg.attach(MIMEText(html_body, "html"))

        cfg = self._settings
        try:
            context = ssl.create_default_context()
            if cfg.smtp_use_tls:
                with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=cfg.smtp_timeout_seconds) as server:
                    server.starttls(context=context)
                    if cfg.smtp_user and cfg.smtp_password:
                        server.login(cfg.smtp_user, cfg.smtp_password)
                    server.sendmail(cfg.smtp_from, [to], msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    cfg.smtp_host, cfg.smtp_port, context=context, timeout=cfg.smtp_timeout_seconds
                ) as server:
                    if cfg.smtp_user and cfg.smtp_password:
                        server.login(cfg.smtp_user, cfg.smtp_password)
                    server.sendmail(cfg.smtp_from, [to], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email delivery to %s failed: %s", redact_email(to), exc)
            raise DeliveryError() from exc

        logger.info("Sent %r to %s", subject, redact_email(to))
