import asyncio
import logging
import smtplib
from email.message import EmailMessage

from tvtracker.config import settings

logger = logging.getLogger(__name__)


def _build_password_reset_message(email: str, token: str) -> EmailMessage:
    link = f"{settings.public_url.rstrip('/')}/password/change?token={token}"

    message = EmailMessage()
    message["From"] = f"tv-tracker <{settings.smtp_email}>"
    message["To"] = email
    message["Subject"] = "Password reset code"
    message.set_content(
        "Somebody has requested a password reset for tv-tracker. "
        f"If this was you, go to {link} to reset your password. "
        "The link will expire in 1 hour. "
        "If this wasn't you, you do not need to take any further action."
    )
    return message


def _send(message: EmailMessage):
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as smtp:
        smtp.starttls()
        smtp.login(settings.smtp_email, settings.smtp_password)
        smtp.send_message(message)


async def send_password_reset_mail(email: str, token: str) -> bool:
    """Send the reset link. Returns False when SMTP is not set up or sending fails."""
    if not all([settings.smtp_host, settings.smtp_port, settings.smtp_email, settings.smtp_password]):
        logger.error("SMTP is not set up, cannot send password reset mail")
        return False

    message = _build_password_reset_message(email, token)
    try:
        await asyncio.to_thread(_send, message)
    except (smtplib.SMTPException, OSError):
        logger.exception("Sending password reset mail failed")
        return False

    logger.info(f"Password reset mail sent to {email}")
    return True
