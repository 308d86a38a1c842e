"""Mail transports used by the email dispatcher."""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from ...domain.models import QueuedEmail
from ...domain.ports.mail import MailTransportError

logger = logging.getLogger(__name__)


class SmtpMailTransport:
    """Sends queued emails via SMTP with STARTTLS."""

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        smtp_username: str,
        smtp_password: str,
        from_email: str,
        from_name: str = "Jearch",
        timeout_seconds: Optional[float] = None,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_username = smtp_username
        self.smtp_password = smtp_password
        self.from_email = from_email
        self.from_name = from_name
        self.timeout_seconds = timeout_seconds

    def send(self, email: QueuedEmail) -> None:
        """
        Send an email via SMTP.

        Args:
            email: Queued item carrying recipient, subject and bodies

        Raises:
            MailTransportError: If the server refused or the connection failed
        """
        if email.body_html:
            msg = MIMEMultipart("alternative")
            msg.attach(MIMEText(email.body_text, "plain", "utf-8"))
            msg.attach(MIMEText(email.body_html, "html", "utf-8"))
        else:
            msg = MIMEText(email.body_text, "plain", "utf-8")
        msg["Subject"] = email.subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = email.to_address

        kwargs = {"timeout": self.timeout_seconds} if self.timeout_seconds else {}
        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, **kwargs) as server:
                server.starttls()
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise MailTransportError(f"SMTP delivery to {email.to_address} failed: {exc}") from exc


class LoggingMailTransport:
    """Development transport used when SMTP is not configured: logs instead of sending."""

    def send(self, email: QueuedEmail) -> None:
        logger.info(
            "[EMAIL] %s to %s (%s)\n%s",
            email.template.value,
            email.to_address,
            email.subject,
            email.body_text,
        )
