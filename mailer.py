import logging
import smtplib
from email.message import EmailMessage

from config import get_settings


logger = logging.getLogger(__name__)


class Mailer:
    def __init__(self) -> None:
        self.settings = get_settings()

    def send(self, to: str, subject: str, html: str) -> bool:
        settings = self.settings
        if not settings.smtp_host:
            logger.warning(f"mail_skipped: reason=smtp_not_configured to={to}")
            return False

        message = EmailMessage()
        message["From"] = settings.smtp_sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(html, subtype="html")

        try:
            with smtplib.SMTP(
                settings.smtp_host, settings.smtp_port, timeout=10
            ) as smtp:
                smtp.starttls()
                if settings.smtp_user:
                    smtp.login(settings.smtp_user, settings.smtp_password or "")
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError):
            logger.exception(f"mail_failed: to={to}")
            return False
        logger.info(f"mail_sent: to={to} subject={subject!r}")
        return True


def password_reset_html(reset_url: str) -> str:
    return (
        "<h2>Password Reset Request</h2>"
        "<p>You requested a password reset. Click the link below to reset your "
        "password:</p>"
        f'<a href="{reset_url}">{reset_url}</a>'
        "<p>This link will expire in 10 minutes.</p>"
        "<p>If you did not request this, please ignore this email.</p>"
    )
