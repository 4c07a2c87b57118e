"""Email delivery for customer notices and operator alerts: SendGrid / Resend."""

import html
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

ALERT_PREFIXES = {
    "critical": "CRITICAL: ",
    "warning": "WARNING: ",
    "info": "INFO: ",
}

ALERT_COLOURS = {
    "critical": "#dc2626",
    "warning": "#f59e0b",
    "info": "#3b82f6",
}


def _recipient(email: str, name: str) -> dict:
    if name:
        return {"email": email, "name": name}
    return {"email": email}


@dataclass
class EmailResult:
    success: bool
    error: Optional[str] = None
    simulated: bool = False


class EmailSender:
    """Sends HTML email to customers and operators.

    Supports SendGrid and Resend via configuration. With no provider
    configured, messages are logged and reported as simulated successes
    so local runs exercise the full flow.
    """

    def __init__(
        self,
        provider: str = "",
        api_key: str = "",
        from_email: str = "support@openword.live",
        from_name: str = "Open Word Support",
        support_email: str = "support@openword.live",
        alert_email: str = "",
        site_url: str = "https://openword.live",
        timeout: float = 30,
    ):
        self.provider = provider.lower()  # "sendgrid" or "resend"
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.support_email = support_email
        self.alert_email = alert_email
        self.site_url = site_url
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return self.provider in ("sendgrid", "resend") and bool(self.api_key)

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        display_name: str = "Customer",
    ) -> EmailResult:
        """Send a customer email wrapped in the branded layout."""
        document = self._build_customer_document(html_body)
        return await self._deliver(to_email, subject, document, display_name)

    async def send_alert(
        self,
        subject: str,
        message: str,
        priority: str = "info",
    ) -> EmailResult:
        """Send an operator alert to the configured alert address."""
        full_subject = f"{ALERT_PREFIXES.get(priority, '')}OpenWord Dashboard - {subject}"
        if not self.alert_email:
            logger.warning("No alert address configured; dropping alert: %s", full_subject)
            return EmailResult(success=False, error="No alert address configured")
        document = self._build_alert_document(full_subject, message, priority)
        return await self._deliver(self.alert_email, full_subject, document)

    def _build_customer_document(self, html_body: str) -> str:
        support = html.escape(self.support_email)
        site = html.escape(self.site_url)
        return (
            "<!DOCTYPE html>\n"
            "<html><head><meta charset=\"utf-8\"></head>\n"
            "<body style=\"font-family: Arial, sans-serif; line-height: 1.6; color: #333;\">\n"
            "<div style=\"max-width: 600px; margin: 0 auto; padding: 20px;\">\n"
            "<div style=\"background: #2563eb; color: white; padding: 20px 25px;\">\n"
            "<h1 style=\"margin: 0; font-size: 24px;\">Open Word</h1>\n"
            "<p style=\"margin: 5px 0 0 0;\">Real-time Translation for Live Events</p>\n"
            "</div>\n"
            "<div style=\"padding: 30px 25px;\">\n"
            f"{html_body}\n"
            "</div>\n"
            "<div style=\"padding: 20px 25px; font-size: 12px; color: #6b7280; text-align: center;\">\n"
            "<p>This email was sent by Open Word</p>\n"
            f"<p><a href=\"{site}\">{site}</a> | <a href=\"mailto:{support}\">{support}</a></p>\n"
            f"<p>If you no longer wish to receive these emails, please contact us at {support}</p>\n"
            "</div>\n"
            "</div>\n"
            "</body></html>"
        )

    def _build_alert_document(self, full_subject: str, message: str, priority: str) -> str:
        colour = ALERT_COLOURS.get(priority, ALERT_COLOURS["info"])
        return (
            "<!DOCTYPE html>\n"
            "<html><body style=\"font-family: Arial, sans-serif; color: #333;\">\n"
            f"<div style=\"background: {colour}; color: white; padding: 20px;\">\n"
            f"<h2 style=\"margin: 0;\">{html.escape(full_subject)}</h2>\n"
            "</div>\n"
            f"<div style=\"padding: 20px;\">{message}\n"
            "<p style=\"font-size: 12px; color: #6b7280;\">"
            "This is an automated alert from OpenWord Dashboard<br>"
            f"Time: {datetime.now(timezone.utc).isoformat()}</p>\n"
            "</div>\n"
            "</body></html>"
        )

    async def _deliver(
        self, to: str, subject: str, document: str, display_name: str = ""
    ) -> EmailResult:
        if self.provider == "sendgrid" and self.api_key:
            return await self._send_sendgrid(to, subject, document, display_name)
        elif self.provider == "resend" and self.api_key:
            return await self._send_resend(to, subject, document, display_name)
        logger.info("Email delivery disabled; would send to %s: %s", to, subject)
        return EmailResult(success=True, simulated=True)

    async def _send_sendgrid(
        self, to: str, subject: str, document: str, display_name: str = ""
    ) -> EmailResult:
        """Send via SendGrid v3 API."""
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    "https://api.sendgrid.com/v3/mail/send",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "personalizations": [{"to": [_recipient(to, display_name)]}],
                        "from": {"email": self.from_email, "name": self.from_name},
                        "reply_to": {"email": self.support_email},
                        "subject": subject,
                        "content": [{"type": "text/html", "value": document}],
                    },
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            logger.exception("SendGrid send to %s failed", to)
            return EmailResult(success=False, error=str(e) or type(e).__name__)

        if resp.status_code in (200, 202):
            logger.info("SendGrid email sent to %s", to)
            return EmailResult(success=True)
        logger.warning("SendGrid error: %s %s", resp.status_code, resp.text)
        return EmailResult(success=False, error=f"SendGrid HTTP {resp.status_code}: {resp.text}")

    async def _send_resend(
        self, to: str, subject: str, document: str, display_name: str = ""
    ) -> EmailResult:
        """Send via Resend API."""
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    "https://api.resend.com/emails",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "from": f"{self.from_name} <{self.from_email}>",
                        "to": [f"{display_name} <{to}>" if display_name else to],
                        "reply_to": self.support_email,
                        "subject": subject,
                        "html": document,
                    },
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            logger.exception("Resend send to %s failed", to)
            return EmailResult(success=False, error=str(e) or type(e).__name__)

        if resp.status_code in (200, 201):
            logger.info("Resend email sent to %s", to)
            return EmailResult(success=True)
        logger.warning("Resend error: %s %s", resp.status_code, resp.text)
        return EmailResult(success=False, error=f"Resend HTTP {resp.status_code}: {resp.text}")
