"""
auth/notifications.py -- Outbound email for OTP delivery.

The orchestrator talks to a Notifier and nothing else. Two implementations:

  LogNotifier     -- writes the message to the log instead of sending it.
                     Default for local development and tests. The OTP itself
                     is logged only when reveal_codes=True (DEBUG mode).
  MailgunNotifier -- POSTs to the Mailgun messages API over a pooled
                     requests.Session.

Bodies are rendered from Jinja2 templates in auth/templates/ with
autoescaping on, so a user-supplied display name cannot inject markup.

Failure policy: send() raises DeliveryError. Callers in the orchestrator
catch it, log it, and carry on -- a lost email never fails a registration or
reset request. There is no automatic retry; the user asks for a resend.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import requests
from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from auth.errors import DeliveryError
from core.config import Settings

logger = logging.getLogger("stallmarket.mail")

_TEMPLATE_DIR = Path(__file__).parent / "templates"


class NotificationKind(str, Enum):
    welcome = "welcome"
    verification = "verification"
    password_reset = "password_reset"


_SUBJECTS: dict[NotificationKind, str] = {
    NotificationKind.welcome: "Welcome to {app_name} - verify your email",
    NotificationKind.verification: "Email verification - {app_name}",
    NotificationKind.password_reset: "Password reset - {app_name}",
}


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


class EmailRenderer:
    """Render subject, HTML and plain-text bodies for a notification kind."""

    def __init__(self, app_name: str, frontend_url: str) -> None:
        self._app_name = app_name
        self._login_url = f"{frontend_url.rstrip('/')}/login"
        self._env = Environment(
            loader=FileSystemLoader(_TEMPLATE_DIR),
            autoescape=select_autoescape(["html"]),
        )

    def render(self, kind: NotificationKind, template_data: dict[str, Any]) -> tuple[str, str, str]:
        context = {
            "app_name": self._app_name,
            "login_url": self._login_url,
            "year": datetime.now(timezone.utc).year,
            **template_data,
        }
        subject = _SUBJECTS[kind].format(app_name=self._app_name)
        html = self._env.get_template(f"{kind.value}.html").render(**context)
        text = (
            f"Hello {context.get('name', '')},\n\n"
            f"Your code: {context.get('code', '')}\n\n"
            f"{self._login_url}\n"
        )
        return subject, html, text


# ---------------------------------------------------------------------------
# Notifier port
# ---------------------------------------------------------------------------


class Notifier(ABC):
    """Port the orchestrator uses to deliver OTP emails."""

    @abstractmethod
    def send(self, kind: NotificationKind, recipient: str, template_data: dict[str, Any]) -> None:
        """Deliver one message. Raises DeliveryError on failure."""


class LogNotifier(Notifier):
    def __init__(self, reveal_codes: bool = False) -> None:
        self._reveal_codes = reveal_codes

    def send(self, kind: NotificationKind, recipient: str, template_data: dict[str, Any]) -> None:
        if self._reveal_codes:
            logger.info("[mail:%s] to=%s code=%s", kind.value, recipient, template_data.get("code"))
        else:
            logger.info("[mail:%s] to=%s (not sent, MAIL_PROVIDER=log)", kind.value, recipient)


class MailgunNotifier(Notifier):
    """Deliver mail through the Mailgun HTTP API."""

    def __init__(
        self,
        api_key: str,
        domain: str,
        renderer: EmailRenderer,
        from_email: str,
        from_name: str,
        base_url: str = "https://api.mailgun.net",
        session: requests.Session | None = None,
    ) -> None:
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/v3/{domain}/messages"
        self._renderer = renderer
        self._from = f"{from_name} <{from_email}>"
        self._session = session or requests.Session()
        # Mailgun does not redirect; refuse long chains outright.
        self._session.max_redirects = 3

    def send(self, kind: NotificationKind, recipient: str, template_data: dict[str, Any]) -> None:
        try:
            subject, html, text = self._renderer.render(kind, template_data)
        except (TemplateError, OSError) as e:
            raise DeliveryError(f"Could not render {kind.value} email: {e}") from e
        try:
            resp = self._session.post(
                self._url,
                auth=("api", self._api_key),
                data={"from": self._from, "to": recipient, "subject": subject, "text": text, "html": html},
                timeout=10,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise DeliveryError(f"Mailgun delivery to {recipient} failed: {e}") from e
        logger.info("[mail:%s] sent to=%s status=%d", kind.value, recipient, resp.status_code)


def build_notifier(settings: Settings) -> Notifier:
    """Return the Notifier selected by MAIL_PROVIDER."""
    if settings.mail_provider == "mailgun":
        renderer = EmailRenderer(app_name=settings.mail_from_name, frontend_url=settings.frontend_url)
        return MailgunNotifier(
            api_key=settings.mailgun_api_key,
            domain=settings.mailgun_domain,
            renderer=renderer,
            from_email=settings.mail_from_email,
            from_name=settings.mail_from_name,
            base_url=settings.mailgun_base_url,
        )
    return LogNotifier(reveal_codes=settings.debug)
