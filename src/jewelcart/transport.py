"""
Mail transports for jewelcart.

A transport hands one rendered email to the outside world and reports the
outcome as a DeliveryResult. The dispatcher owns retry decisions; transports
only classify failures as transient or permanent.

- ConsoleTransport  logs instead of sending (development default)
- SmtpTransport     delivers through an SMTP relay with aiosmtplib
"""

import asyncio
import logging
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, formatdate, make_msgid
from typing import Protocol, runtime_checkable

import aiosmtplib

from .config import AppConfig, SmtpConfig

logger = logging.getLogger("jewelcart.transport")

# SMTP reply codes that are worth retrying later.
_TRANSIENT_CODES = {421, 450, 451, 452}


@dataclass(frozen=True)
class OutgoingEmail:
    to: str
    subject: str
    html: str
    from_name: str


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one transport send."""

    success: bool
    provider_message_id: str | None = None
    error: str | None = None
    transient: bool = True

    @classmethod
    def ok(cls, provider_message_id: str | None = None) -> "DeliveryResult":
        return cls(success=True, provider_message_id=provider_message_id)

    @classmethod
    def failure(cls, error: str, transient: bool = True) -> "DeliveryResult":
        return cls(success=False, error=error, transient=transient)


@runtime_checkable
class Transport(Protocol):
    name: str

    def send(self, email: OutgoingEmail) -> DeliveryResult: ...


class ConsoleTransport:
    """Logs emails instead of sending them."""

    name = "console"

    def __init__(self, from_email: str = "orders@localhost"):
        self.from_email = from_email
        self._counter = 0

    def send(self, email: OutgoingEmail) -> DeliveryResult:
        self._counter += 1
        logger.info(
            "Console mail (not actually sent) from %s to %s: %s",
            formataddr((email.from_name, self.from_email)),
            email.to,
            email.subject,
        )
        return DeliveryResult.ok(f"console-{self._counter}")


class SmtpTransport:
    """Sends through an SMTP relay; each send opens its own connection."""

    name = "smtp"

    def __init__(self, config: SmtpConfig, from_email: str):
        self.config = config
        self.from_email = from_email

    def _build_message(self, email: OutgoingEmail) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((email.from_name, self.from_email))
        msg["To"] = email.to
        msg["Subject"] = email.subject
        msg["Date"] = formatdate(localtime=True)
        domain = self.from_email.rsplit("@", 1)[-1] if "@" in self.from_email else "localhost"
        msg["Message-ID"] = make_msgid(domain=domain)
        msg.set_content("This message requires an HTML-capable mail client.")
        msg.add_alternative(email.html, subtype="html")
        return msg

    async def _send_async(self, msg: EmailMessage) -> None:
        await aiosmtplib.send(
            msg,
            hostname=self.config.host,
            port=self.config.port,
            username=self.config.username,
            password=self.config.password,
            start_tls=self.config.start_tls,
            timeout=self.config.timeout,
        )

    def send(self, email: OutgoingEmail) -> DeliveryResult:
        msg = self._build_message(email)
        try:
            asyncio.run(self._send_async(msg))
        except aiosmtplib.SMTPResponseException as e:
            transient = e.code in _TRANSIENT_CODES or 400 <= e.code < 500
            logger.warning("SMTP rejected mail to %s: %s %s", email.to, e.code, e.message)
            return DeliveryResult.failure(f"{e.code} {e.message}", transient=transient)
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as e:
            logger.warning("SMTP send error for %s: %s", email.to, e)
            return DeliveryResult.failure(str(e), transient=True)

        logger.info("Email sent to %s (msg_id=%s)", email.to, msg["Message-ID"])
        return DeliveryResult.ok(msg["Message-ID"])


def build_transport(config: AppConfig) -> Transport:
    """Create the transport selected by JEWELCART_MAIL_TRANSPORT."""
    if config.mail_transport == "smtp":
        return SmtpTransport(config.smtp or SmtpConfig(), config.mail_from)
    return ConsoleTransport(config.mail_from)
