"""
Email Service

Out-of-band delivery for invitation links.
Uses SMTP; when email is disabled the message is only logged.
"""

import smtplib
from datetime import datetime
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional
from core.config import settings
import logging

logger = logging.getLogger(__name__)

ROLE_LABELS = {
    "admin": "Administrador / Administrator",
    "officer": "Oficial / Officer",
}


class EmailService:
    """Service for sending emails"""

    def __init__(self):
        self.smtp_server = settings.SMTP_SERVER
        self.smtp_port = settings.SMTP_PORT
        self.smtp_username = settings.SMTP_USERNAME
        self.smtp_password = settings.SMTP_PASSWORD
        self.from_email = settings.FROM_EMAIL
        self.from_name = settings.FROM_NAME
        self.enabled = settings.EMAIL_ENABLED

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """
        Send an email.

        Returns True if sent successfully, False otherwise.
        """
        if not self.enabled:
            logger.info(f"Email disabled, would send to {to_email}: {subject}")
            return False

        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = f"{self.from_name} <{self.from_email}>"
            msg['To'] = to_email

            # Add text and HTML parts
            if text_content:
                msg.attach(MIMEText(text_content, 'plain'))
            msg.attach(MIMEText(html_content, 'html'))

            if self.smtp_username and self.smtp_password:
                with smtplib.SMTP(self.smtp_server, self.smtp_port) as server:
                    server.starttls()
                    server.login(self.smtp_username, self.smtp_password)
                    server.send_message(msg)
            else:
                # Local development - just log
                logger.info(f"Would send email to {to_email}: {subject}")

            return True

        except Exception as e:
            logger.error(f"Error sending email to {to_email}: {str(e)}")
            return False

    def send_invitation(
        self,
        to_email: str,
        accept_url: str,
        role: str,
        expires_at: datetime,
    ) -> bool:
        """Deliver an invitation link. The link is the only place the token appears."""
        subject = "Invitación al panel del Centro Cultural / Staff invitation"
        role_label = ROLE_LABELS.get(role, role)
        expires = expires_at.strftime("%Y-%m-%d %H:%M UTC")

        html_content = "\n".join([
            "<h2>Hola / Hello,</h2>",
            f"<p>Has sido invitado como <strong>{role_label}</strong>.</p>",
            f"<p>You have been invited as <strong>{role_label}</strong>.</p>",
            f'<p><a href="{accept_url}">Aceptar invitación / Accept invitation</a></p>',
            f"<p>El enlace vence el / The link expires on {expires}.</p>",
        ])
        text_content = "\n".join([
            "Hola / Hello,",
            f"Invitación / Invitation: {role_label}",
            f"Aceptar / Accept: {accept_url}",
            f"Vence / Expires: {expires}",
        ])

        return self.send_email(to_email, subject, html_content, text_content)


# Singleton instance
email_service = EmailService()
