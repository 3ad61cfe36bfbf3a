"""Email Notifier — best-effort confirmation and staff alert emails for new quotes.

Invariants:
    - Resend is tried first when an API key is configured
    - SMTP is the fallback, used when Resend is absent or fails
    - Failure of every configured provider raises NotificationError; the intake
      handler catches it, so a notification never fails a submission
    - Not configured at all → enabled is False and nothing is sent

Design Decisions:
    - The resend SDK and smtplib are both blocking; each send runs in a worker
      thread (asyncio.to_thread) so the event loop keeps driving the retry scheduler
    - resend.api_key is module-global in the SDK; it is set per send
    - Plain-text bodies: HTML templating is out of scope
"""

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage

import resend

from quotedesk.core.errors import NotificationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SmtpConfig:
    host: str
    port: int
    user: str
    password: str
    use_tls: bool = True


class EmailNotifier:
    """Sends the customer confirmation and the company notification."""

    def __init__(
        self,
        from_address: str,
        notify_address: str | None = None,
        resend_api_key: str | None = None,
        smtp: SmtpConfig | None = None,
        site_url: str = "http://localhost:3000",
        timeout_seconds: float = 10.0,
    ):
        self.from_address = from_address
        self.notify_address = notify_address
        self.resend_api_key = resend_api_key
        self.smtp = smtp
        self.site_url = site_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    @property
    def enabled(self) -> bool:
        return bool(self.resend_api_key or self.smtp)

    async def send_quote_notifications(self, quote: dict) -> None:
        """Send both emails. Raises NotificationError if any email could not be sent."""
        if not self.enabled:
            logger.debug("Email notifications not configured, skipping")
            return

        await self.send(
            quote["email"],
            "We received your quote request",
            self._customer_body(quote),
        )
        if self.notify_address:
            await self.send(
                self.notify_address,
                f"New quote request from {quote.get('customerName') or quote['email']}",
                self._company_body(quote),
            )

    async def send(self, to: str, subject: str, body: str) -> str:
        """Send one email. Returns the provider name that delivered it."""
        if self.resend_api_key:
            try:
                await asyncio.to_thread(self._send_via_resend, to, subject, body)
                logger.info(f"Email sent via Resend: {subject}")
                return "resend"
            except Exception as e:
                logger.warning(f"Resend failed, falling back to SMTP: {e}")

        if not self.smtp:
            raise NotificationError("no SMTP fallback configured", "resend")

        try:
            await asyncio.to_thread(self._send_via_smtp, to, subject, body)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(str(e), "smtp")
        logger.info(f"Email sent via SMTP: {subject}")
        return "smtp"

    def _send_via_resend(self, to: str, subject: str, body: str) -> None:
        resend.api_key = self.resend_api_key
        response = resend.Emails.send({
            "from": self.from_address,
            "to": [to],
            "subject": subject,
            "text": body,
        })
        if not isinstance(response, dict) or not response.get("id"):
            raise NotificationError(f"unexpected Resend response: {response}", "resend")

    def _send_via_smtp(self, to: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.from_address
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)

        with smtplib.SMTP(
            self.smtp.host, self.smtp.port, timeout=self.timeout_seconds,
        ) as server:
            if self.smtp.use_tls:
                server.starttls()
            server.login(self.smtp.user, self.smtp.password)
            server.send_message(msg)

    def tracking_url(self, quote: dict) -> str | None:
        if not quote.get("quoteId") or not quote.get("publicToken"):
            return None
        return (
            f"{self.site_url}/quote-requests/{quote['quoteId']}"
            f"?token={quote['publicToken']}"
        )

    def _customer_body(self, quote: dict) -> str:
        lines = [
            f"Hi {quote.get('customerName') or 'there'},",
            "",
            "Thanks for your quote request. Our team will review it and "
            "contact you shortly.",
            "",
            f"Product: {quote.get('productName') or 'Not specified'}",
            f"Notes: {quote.get('notes') or 'No notes provided'}",
        ]
        url = self.tracking_url(quote)
        if url:
            lines += ["", f"View your request: {url}"]
        return "\n".join(lines)

    def _company_body(self, quote: dict) -> str:
        fields = [
            ("Quote ID", quote.get("quoteId")),
            ("Name", quote.get("customerName")),
            ("Email", quote.get("email")),
            ("Phone", quote.get("phone")),
            ("ZIP", quote.get("zip")),
            ("Product", quote.get("productName")),
            ("Product ID", quote.get("productId")),
            ("SKU", quote.get("sku")),
            ("Material", quote.get("material")),
            ("Dimensions", quote.get("dimensions")),
            ("Notes", quote.get("notes")),
        ]
        lines = [f"{label}: {value or 'Not provided'}" for label, value in fields]
        images = quote.get("images") or []
        if images:
            lines.append("")
            lines.append("Images:")
            lines += [f"  {img.get('secureUrl')}" for img in images]
        return "\n".join(lines)
