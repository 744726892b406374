"""Partner e-mail through the Resend HTTP API.

Provides ResendEmailSender (POST /emails with a bearer key) and the
"New Deal Released" message sent to a partner's primary contact when a deal
is released to them. Sending is single-attempt; callers treat failures as
best-effort and log them.
"""

from __future__ import annotations

from html import escape

import httpx
import structlog
from pydantic import BaseModel

from src.dealflow.deals.schemas import DealRead, FundingPartnerRead

logger = structlog.get_logger(__name__)


class EmailMessage(BaseModel):
    to: str
    subject: str
    html: str
    text: str


class ResendEmailSender:
    """Async client for the Resend e-mail API.

    An empty api_key disables sending: messages are logged and dropped,
    which is the default for local development.

    Args:
        api_key: Resend API key.
        sender: From address, e.g. "BitCense <deals@bitcense.com>".
        api_url: Full URL of the send endpoint.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        api_key: str,
        sender: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 10.0,
    ) -> None:
        self._api_key = api_key
        self._sender = sender
        self._api_url = api_url
        self._timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def send(self, message: EmailMessage) -> str | None:
        """Send one message.

        Returns:
            The provider message id, or None when sending is disabled.

        Raises:
            httpx.HTTPError: On transport failure or a non-2xx response.
        """
        if not self.enabled:
            logger.info("email.disabled", to=message.to, subject=message.subject)
            return None

        async with httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            timeout=self._timeout,
        ) as client:
            response = await client.post(
                self._api_url,
                json={
                    "from": self._sender,
                    "to": [message.to],
                    "subject": message.subject,
                    "html": message.html,
                    "text": message.text,
                },
            )
            response.raise_for_status()
            message_id = response.json().get("id")
            logger.info("email.sent", to=message.to, message_id=message_id)
            return message_id


def _format_amount(amount: float | None) -> str:
    if amount is None:
        return "N/A"
    return f"${amount:,.0f}"


def build_partner_release_email(
    deal: DealRead,
    partner: FundingPartnerRead,
    app_url: str,
) -> EmailMessage | None:
    """Compose the release alert for a partner's primary contact.

    Returns None when the partner has no contact address.
    """
    if not partner.primary_contact_email:
        return None

    dashboard_url = f"{app_url.rstrip('/')}/dashboard/{partner.slug}"
    amount = _format_amount(deal.capital_amount)
    score_line = (
        f"Qualification Score: {deal.overall_score:.0f}/100"
        if deal.overall_score is not None
        else ""
    )
    subject = f"New Deal Released - {deal.company_name}"

    html = f"""<!DOCTYPE html>
<html>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; background-color: #f3f4f6; padding: 20px;">
  <div style="max-width: 600px; margin: 0 auto; background-color: white; border-radius: 12px;">
    <div style="background-color: #6366F1; padding: 32px 24px; text-align: center;">
      <h1 style="margin: 0; color: white; font-size: 24px;">New Deal Available</h1>
    </div>
    <div style="padding: 32px 24px; color: #374151;">
      <p>Hi {escape(partner.name)},</p>
      <p>A new deal has been released to your review queue:</p>
      <h2 style="color: #111827;">{escape(deal.company_name)}</h2>
      <p>Deal Code: {escape(deal.qualification_code)}</p>
      <p>Capital: {escape(amount)}</p>
      <p>{escape(score_line)}</p>
      <p style="text-align: center; margin: 32px 0;">
        <a href="{escape(dashboard_url)}" style="background-color: #6366F1; color: white; padding: 14px 32px; border-radius: 8px; text-decoration: none;">View Deal on Dashboard</a>
      </p>
      <p style="color: #6B7280;">Express interest to unlock the full deal package, or pass if it's not a fit.</p>
    </div>
  </div>
</body>
</html>
"""

    text_lines = [
        f"New Deal Available - {deal.company_name}",
        "",
        f"Hi {partner.name},",
        "",
        "A new deal has been released to your review queue:",
        "",
        f"Company: {deal.company_name}",
        f"Deal Code: {deal.qualification_code}",
        f"Capital Requested: {amount}",
    ]
    if score_line:
        text_lines.append(score_line)
    text_lines += ["", f"View the deal on your dashboard: {dashboard_url}"]

    return EmailMessage(
        to=partner.primary_contact_email,
        subject=subject,
        html=html,
        text="\n".join(text_lines),
    )
