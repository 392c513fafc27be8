"""
Email delivery via Resend.

The workflow only needs one capability, `send(to, subject, html)`. Message
bodies are kept deliberately plain; page design lives with the frontend.
Delivery is best-effort: callers check `EmailResult.success` and never roll
back a state transition because an email failed.
"""

from __future__ import annotations

import html
import logging
from typing import Protocol

import resend
from pydantic import BaseModel

from cliqsafe import config

logger = logging.getLogger(__name__)

# Initialize Resend with API key
resend.api_key = config.settings.RESEND_API_KEY


class EmailResult(BaseModel):
    success: bool
    error: str | None = None


class EmailSender(Protocol):
    async def send(self, to: str, subject: str, html: str) -> EmailResult: ...


class ResendEmailSender:
    """EmailSender backed by the Resend API."""

    async def send(self, to: str, subject: str, html: str) -> EmailResult:
        params = {
            "from": config.settings.EMAIL_FROM,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        try:
            resend.Emails.send(params)
        except Exception as e:
            logger.exception("Email to %s failed: %s", to, subject)
            return EmailResult(success=False, error=str(e))
        return EmailResult(success=True)


email_sender: EmailSender = ResendEmailSender()


def _layout(title: str, body: str, button_label: str, url: str, footer: str) -> str:
    safe_url = html.escape(url, quote=True)
    return f"""
    <!DOCTYPE html>
    <html>
    <head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
    <body style="font-family: Arial, sans-serif; color: #000; background: #fff;">
        <div style="max-width: 600px; margin: 0 auto; padding: 32px 20px;">
            <h2>{html.escape(title)}</h2>
            <p>{body}</p>
            <p><a href="{safe_url}" style="background:#000;color:#fff;padding:14px 28px;border-radius:9999px;text-decoration:none;">{html.escape(button_label)}</a></p>
            <p style="font-size: 13px; color: #666;">If the button doesn't work, copy this link into your browser:<br><code>{safe_url}</code></p>
            <hr style="border: 0; border-top: 1px solid #eee;">
            <p style="font-size: 12px; color: #666;">{html.escape(footer)}</p>
        </div>
    </body>
    </html>
    """


async def send_magic_link(email: str, raw_secret: str, sender: EmailSender | None = None) -> EmailResult:
    """Send a sign-in link. The link is valid for 15 minutes."""
    url = f"{config.settings.PUBLIC_URL}/auth/magic/verify?token={raw_secret}"
    body = "Click the button below to sign in to Cliqstr. This link expires in 15 minutes."
    return await (sender or email_sender).send(
        email,
        "Sign in to Cliqstr",
        _layout(
            "Sign in to Cliqstr",
            body,
            "Sign in",
            url,
            "If you didn't request this email, you can safely ignore it.",
        ),
    )


async def send_parent_approval(
    email: str,
    raw_secret: str,
    child_first_name: str,
    child_last_name: str,
    resend_reminder: bool = False,
    sender: EmailSender | None = None,
) -> EmailResult:
    """Send the parent-approval link for a child."""
    child_name = html.escape(f"{child_first_name} {child_last_name}")
    url = f"{config.settings.PUBLIC_URL}/parent-approval?token={raw_secret}"
    if resend_reminder:
        subject = f"Continue setting up {child_first_name} {child_last_name} on Cliqstr"
        body = (
            f"It looks like you started setting up {child_name} on Cliqstr but didn't finish. "
            "You can pick up where you left off."
        )
    else:
        subject = f"{child_first_name} {child_last_name} needs your approval to join Cliqstr"
        body = (
            f"{child_name} wants to join Cliqstr. As their parent or guardian, you decide. "
            "You'll be asked to review the Red Alert safety agreement before approving."
        )
    return await (sender or email_sender).send(
        email,
        subject,
        _layout(
            subject,
            body,
            "Review request",
            url,
            "This link expires in 7 days. If you don't recognise this child, you can decline or ignore it.",
        ),
    )
