# tannery/connectors/smtp_mailer.py
"""
Transactional mailer over SMTP.

Env vars:
- EMAIL_HOST: SMTP server; when empty the mailer logs and skips (dev mode)
- EMAIL_PORT (default: 587): 465 uses implicit TLS, anything else STARTTLS when offered
- EMAIL_USER / EMAIL_PASS: optional login
- ADMIN_EMAIL (default: admin@example.com): sender address
- EMAIL_FROM_NAME (default: PureGrain Admin)
"""

import os
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage as MimeMessage
from email.utils import formataddr, make_msgid
from typing import Optional

import anyio

from tannery import monitoring
from tannery.errors import SideEffectError

EMAIL_HOST = os.getenv("EMAIL_HOST", "")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", "587"))
EMAIL_USER = os.getenv("EMAIL_USER", "")
EMAIL_PASS = os.getenv("EMAIL_PASS", "")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")
EMAIL_FROM_NAME = os.getenv("EMAIL_FROM_NAME", "PureGrain Admin")


@dataclass
class EmailMessage:
    to: str
    subject: str
    text: str
    html: Optional[str] = None


class SmtpMailer:
    def __init__(
        self,
        host: str = None,
        port: int = None,
        user: str = None,
        password: str = None,
        sender: str = None,
        timeout: float = 30.0,
    ):
        self.host = EMAIL_HOST if host is None else host
        self.port = EMAIL_PORT if port is None else port
        self.user = EMAIL_USER if user is None else user
        self.password = EMAIL_PASS if password is None else password
        self.sender = sender or formataddr((EMAIL_FROM_NAME, ADMIN_EMAIL))
        self.timeout = timeout

    def build_mime(self, message: EmailMessage) -> MimeMessage:
        mime = MimeMessage()
        mime["From"] = self.sender
        mime["To"] = message.to
        mime["Subject"] = message.subject
        mime["Message-ID"] = make_msgid()
        mime.set_content(message.text)
        mime.add_alternative(message.html or message.text, subtype="html")
        return mime

    def _deliver(self, mime: MimeMessage) -> None:
        if self.port == 465:
            client = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout,
                                      context=ssl.create_default_context())
        else:
            client = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        with client:
            if self.port != 465:
                client.ehlo()
                if client.has_extn("starttls"):
                    client.starttls(context=ssl.create_default_context())
                    client.ehlo()
            if self.user:
                client.login(self.user, self.password)
            client.send_message(mime)

    async def send_email(self, message: EmailMessage) -> None:
        if not self.host:
            monitoring.logger.info(
                "Email transport not configured, skipping send",
                extra={"to": message.to, "subject": message.subject},
            )
            return
        mime = self.build_mime(message)
        try:
            await anyio.to_thread.run_sync(self._deliver, mime)
        except (smtplib.SMTPException, OSError) as e:
            raise SideEffectError(f"Failed to send email to {message.to}", {"exception": str(e)}) from e
        monitoring.logger.info("Email sent", extra={"to": message.to, "message_id": mime["Message-ID"]})
