# qrattend/backend/tools/mailer.py

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from ..config.config import settings

logger = logging.getLogger(__name__)


class MailDeliveryError(Exception):
    pass


def _send_sync(recipient: str, subject: str, html_body: str):
    msg = MIMEMultipart()
    msg["From"] = settings.SMTP_SENDER
    msg["To"] = recipient
    msg["Subject"] = subject
    msg.attach(MIMEText(html_body, "html"))

    with smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT) as server:
        if settings.SMTP_USERNAME:
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.sendmail(settings.SMTP_SENDER, recipient, msg.as_string())


async def send_password_reset_email(recipient: str, reset_link: str) -> bool:
    """
    Sends the password reset link to ``recipient``.

    Returns False without sending when SMTP is not configured (local
    development); the link is logged instead.
    """
    if not settings.SMTP_HOST:
        logger.warning(f"SMTP is not configured, password reset email for '{recipient}' not sent. Link: {reset_link}")
        return False

    body = f"""
        <p>A password reset was requested for your account.</p>
        <p><a href="{reset_link}">Reset your password</a></p>
        <p>The link expires in {settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES} minutes.
        If you did not request this, you can ignore this email.</p>
    """
    try:
        # smtplib blocks, keep it off the event loop.
        await asyncio.to_thread(_send_sync, recipient, "Password reset", body)
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send password reset email to '{recipient}': {e}", exc_info=True)
        raise MailDeliveryError("Could not send the password reset email.") from e
    logger.info(f"Password reset email sent to '{recipient}'.")
    return True
