"""
SMTP mail sender.
"""
import smtplib
from email.message import EmailMessage
from typing import Optional

from ..config import settings


def email_enabled() -> bool:
    return bool(settings.enable_email and settings.smtp_host and settings.mail_from)


def send_email(to: str, subject: str, text: str, html: Optional[str] = None) -> bool:
    """
    Send one message through the configured SMTP relay.

    Returns False without sending when mail is not configured. SMTP errors
    propagate; callers decide whether a failure matters.
    """
    if not email_enabled() or not to:
        return False
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.mail_from
    msg["To"] = to
    msg.set_content(text)
    if html:
        msg.add_alternative(html, subtype="html")
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as s:
        if settings.smtp_tls:
            s.starttls()
        if settings.smtp_username and settings.smtp_password:
            s.login(settings.smtp_username, settings.smtp_password)
        s.send_message(msg)
    return True
