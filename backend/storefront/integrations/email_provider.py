"""
storefront/integrations/email_provider.py - Outbound email transports.

Two transports share one coroutine interface, `send(to, subject, html, text, tags)`,
returning the provider's message id:
- ResendProvider: Resend HTTP API (API key from settings), used in production.
- SmtpProvider: plain SMTP/SMTPS, for local mail catchers and fallback hosting.
Both raise EmailSendError; callers decide whether that is fatal.
"""
import asyncio
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Dict, Optional

import httpx

from storefront.config import Settings


class EmailSendError(Exception):
    pass


class ResendProvider:
    API_URL = "https://api.resend.com/emails"

    def __init__(self, api_key: str, sender: str, reply_to: Optional[str] = None, timeout: float = 15.0):
        self.api_key = api_key
        self.sender = sender
        self.reply_to = reply_to
        self.timeout = timeout

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
        tags: Optional[Dict[str, str]] = None,
    ) -> Optional[str]:
        if not self.api_key:
            raise EmailSendError("RESEND_API_KEY is not configured")

        payload = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text
        if self.reply_to:
            payload["reply_to"] = self.reply_to
        if tags:
            payload["tags"] = [{"name": k, "value": v} for k, v in tags.items()]

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(
                    self.API_URL,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as e:
            raise EmailSendError(f"Resend request failed: {e}") from e

        if r.status_code >= 400:
            raise EmailSendError(f"Resend rejected the message ({r.status_code}): {r.text[:300]}")
        return (r.json() or {}).get("id")


class SmtpProvider:
    """
    Simple SMTP sender.
    - port 465 uses implicit SSL; 587 with use_starttls=True upgrades with STARTTLS.
    - The blocking smtplib work runs in the default executor.
    """

    def __init__(self, host: str, port: int, user: Optional[str], password: Optional[str],
                 sender: str, use_starttls: bool = False, reply_to: Optional[str] = None):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.use_starttls = use_starttls
        self.reply_to = reply_to

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
        tags: Optional[Dict[str, str]] = None,
    ) -> Optional[str]:
        if not (self.host and self.port and self.user and self.password):
            raise EmailSendError("SMTP config incomplete: check host/port/user/password")

        msg = EmailMessage()
        msg["To"] = to
        msg["From"] = self.sender
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid(domain=self.sender.rsplit("@", 1)[-1].rstrip(">"))
        if self.reply_to:
            msg["Reply-To"] = self.reply_to
        msg.set_content(text or "Please view this email in an HTML capable client.")
        msg.add_alternative(html, subtype="html")

        def _send_blocking():
            context = ssl.create_default_context()
            if self.use_starttls:
                with smtplib.SMTP(self.host, self.port) as server:
                    server.ehlo()
                    server.starttls(context=context)
                    server.ehlo()
                    server.login(self.user, self.password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP_SSL(self.host, self.port, context=context) as server:
                    server.login(self.user, self.password)
                    server.send_message(msg)

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, _send_blocking)
        except (smtplib.SMTPException, OSError) as e:
            raise EmailSendError(f"SMTP send failed: {e}") from e
        return msg["Message-ID"]


def build_provider(settings: Settings):
    sender = f"{settings.email_from_name} <{settings.email_from}>" if settings.email_from_name else settings.email_from
    reply_to = settings.email_reply_to or settings.email_from
    if settings.email_provider == "smtp":
        return SmtpProvider(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            sender=sender,
            use_starttls=settings.smtp_use_starttls,
            reply_to=reply_to,
        )
    return ResendProvider(api_key=settings.resend_api_key, sender=sender, reply_to=reply_to)
