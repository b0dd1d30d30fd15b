"""
WALI-OS Email Service
Jinja2-rendered emails delivered through SendGrid, or logged when no email
service is configured.
"""
import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import structlog
from jinja2 import Environment, FileSystemLoader, TemplateNotFound
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Content, Email, Mail, To

from walios.core.config import settings

logger = structlog.get_logger(__name__)

TEMPLATES_DIR = Path(__file__).parent.parent / "templates"

CHAT_HISTORY_TEMPLATE = "chat_history_export"


class EmailDeliveryError(Exception):
    """SendGrid rejected or failed to accept a message."""


class EmailService:
    """Renders templates and hands them to SendGrid."""

    def __init__(self):
        self._env: Optional[Environment] = None
        self._client: Optional[SendGridAPIClient] = None

    @property
    def env(self) -> Environment:
        """Lazy-loaded Jinja2 environment."""
        if self._env is None:
            self._env = Environment(
                loader=FileSystemLoader(str(TEMPLATES_DIR)),
                autoescape=True,
                trim_blocks=True,
                lstrip_blocks=True,
            )
        return self._env

    @property
    def client(self) -> SendGridAPIClient:
        """Lazy-loaded SendGrid client."""
        if self._client is None:
            if not settings.sendgrid_api_key:
                raise ValueError("SendGrid API key not configured")
            self._client = SendGridAPIClient(api_key=settings.sendgrid_api_key)
        return self._client

    def is_configured(self) -> bool:
        return (settings.email_service or "").lower() == "sendgrid" and bool(settings.sendgrid_api_key)

    def render_email(self, template_name: str, context: dict[str, Any]) -> tuple[str, str]:
        """
        Render the HTML and plain-text versions of a template.

        Args:
            template_name: Base name of the template (without extension).
            context: Variables passed to the template.

        Returns:
            Tuple of (html_content, text_content).
        """
        full_context = {
            "app_name": settings.app_name,
            "frontend_url": settings.frontend_url,
            "current_year": datetime.now().year,
            **context,
        }
        html_content = self.env.get_template(f"{template_name}.html").render(**full_context)
        try:
            text_content = self.env.get_template(f"{template_name}.txt").render(**full_context)
        except TemplateNotFound:
            logger.warning("plain_text_template_not_found", template=f"{template_name}.txt")
            text_content = ""
        return html_content, text_content

    def _build_message(self, to_email: str, subject: str, html: str, text: str, to_name: Optional[str]) -> Mail:
        message = Mail()
        message.from_email = Email(settings.from_email, settings.from_name)
        message.subject = subject
        message.add_to(To(to_email, to_name))
        if text:
            message.add_content(Content("text/plain", text))
        message.add_content(Content("text/html", html))
        return message

    async def send_email(
        self,
        to_email: str,
        subject: str,
        template_name: str,
        context: dict[str, Any],
        to_name: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Render and deliver a templated email.

        Returns:
            ``{"status": "sent" | "logged", "messageId": ...}``.

        Raises:
            EmailDeliveryError: If SendGrid answers with a non-2xx status.
        """
        html, text = self.render_email(template_name, context)

        if not self.is_configured():
            logger.info("email_logged", to=to_email, subject=subject, template=template_name, size=len(html))
            return {"status": "logged", "messageId": None}

        message = self._build_message(to_email, subject, html, text, to_name)
        response = await asyncio.to_thread(self.client.send, message)
        if response.status_code >= 300:
            raise EmailDeliveryError(f"SendGrid returned {response.status_code}")

        message_id = response.headers.get("X-Message-Id")
        logger.info("email_sent", to=to_email, subject=subject[:50], message_id=message_id)
        return {"status": "sent", "messageId": message_id}

    async def send_chat_history(self, to_email: str, export: dict[str, Any]) -> dict[str, Any]:
        """Email an exported chat history produced by the cleanup flow."""
        profile = export.get("userProfile") or {}
        name = " ".join(p for p in (profile.get("first_name"), profile.get("last_name")) if p) or None
        summary = export.get("summary") or {}
        return await self.send_email(
            to_email=to_email,
            subject=f"Your {settings.app_name} chat history ({summary.get('totalMessages', 0)} messages)",
            template_name=CHAT_HISTORY_TEMPLATE,
            context={
                "user_name": name or "Valued User",
                "organization_name": profile.get("organization_name") or "your organization",
                "sessions": export.get("sessions") or [],
                "summary": summary,
            },
            to_name=name,
        )


_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service
