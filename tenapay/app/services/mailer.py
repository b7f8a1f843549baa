"""
Outbound email over SMTP.

Disabled (no-op) when no SMTP host is configured.
"""

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from tenapay.app.core.config import settings

logger = logging.getLogger(__name__)


class Mailer:

    def __init__(
        self,
        host: str,
        port: int = 587,
        user: Optional[str] = None,
        password: Optional[str] = None,
        sender: str = "alerts@tenapay.local",
        use_tls: bool = True,
        timeout: float = 15.0
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "Mailer":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            sender=settings.mail_sender,
            use_tls=settings.smtp_use_tls,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    async def send(self, to: str, subject: str, html: str) -> bool:
        """
        Send an HTML email. Returns False when mail is disabled.

        SMTP errors propagate; callers outside the ledger swallow them.
        """
        if not self.enabled:
            logger.debug("SMTP disabled, skipping email to %s", to)
            return False

        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(html, subtype="html")

        # smtplib blocks; keep it off the event loop
        await asyncio.to_thread(self._deliver, message)
        logger.info("Email sent to %s", to)
        return True

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.user:
                smtp.login(self.user, self.password or "")
            smtp.send_message(message)
