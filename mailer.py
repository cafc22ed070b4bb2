"""
Transactional email through Resend.

Delivery problems never raise: ``send`` reports ``(ok, error)`` and the
caller decides what to tell the client.
"""
from typing import Optional, Tuple

import resend
import structlog

from config import settings

logger = structlog.get_logger(__name__)


class ResendMailer:
    def __init__(self, api_key: str, sender: str, sender_name: str):
        self.api_key = (api_key or "").strip()
        self.sender = sender
        self.sender_name = sender_name

    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> Tuple[bool, Optional[str]]:
        if not self.api_key:
            return False, "Resend API key is not configured."

        payload = {
            "from": f"{self.sender_name} <{self.sender}>",
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text

        previous_api_key = getattr(resend, "api_key", None)
        resend.api_key = self.api_key
        try:
            response = resend.Emails.send(payload)
        except Exception as exc:
            return False, str(exc)
        finally:
            resend.api_key = previous_api_key

        if not isinstance(response, dict) or not response.get("id"):
            return False, str(response)
        return True, None


def get_mailer() -> ResendMailer:
    return ResendMailer(settings.resend_api_key, settings.email_from, settings.shop_name)


def build_otp_email_html(code: str, ttl_minutes: int, shop_name: str) -> str:
    return f"""
<div style="font-family: 'Helvetica Neue', Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 40px 20px;">
  <div style="text-align: center; margin-bottom: 30px;">
    <h1 style="color: #d4af37; font-size: 32px; margin: 0;">{shop_name}</h1>
    <p style="color: #888; font-size: 14px;">Premium Fragrances</p>
  </div>
  <div style="background: #1a1a1a; border-radius: 16px; padding: 40px; text-align: center;">
    <h2 style="color: #fff; margin: 0 0 20px;">Your Verification Code</h2>
    <div style="background: #d4af37; color: #000; font-size: 32px; font-weight: bold; letter-spacing: 8px; padding: 16px 32px; border-radius: 12px; display: inline-block;">
      {code}
    </div>
    <p style="color: #888; margin-top: 24px; font-size: 14px;">
      This code expires in <strong>{ttl_minutes} minutes</strong>
    </p>
  </div>
  <p style="color: #666; font-size: 12px; text-align: center; margin-top: 30px;">
    If you didn't request this code, you can safely ignore this email.
  </p>
</div>
"""


def send_otp_email(mailer, email: str, code: str) -> bool:
    """Send the OTP code; returns False (and logs) when delivery failed."""
    subject = f"Your {settings.shop_name} OTP Code"
    html = build_otp_email_html(code, settings.otp_ttl_minutes, settings.shop_name)
    text = f"Your {settings.shop_name} verification code is {code}. It expires in {settings.otp_ttl_minutes} minutes."
    ok, error = mailer.send(email, subject, html, text)
    if ok:
        logger.info("otp_email_sent", email=email)
    else:
        logger.error("otp_email_failed", email=email, error=error)
    return ok
