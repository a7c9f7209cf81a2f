from __future__ import annotations

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .settings import settings


def send_email(subject: str, body: str) -> bool:
    """Send an email if SMTP settings are configured.

    Environment variables:
      - OBSYNC_ENABLE_EMAIL=true
      - OBSYNC_SMTP_HOST / OBSYNC_SMTP_PORT
      - OBSYNC_SMTP_USER / OBSYNC_SMTP_PASSWORD
      - OBSYNC_EMAIL_FROM / OBSYNC_EMAIL_TO
    """
    if not settings.enable_email:
        return False
    if not all(
        [
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
            settings.email_from,
            settings.email_to,
        ]
    ):
        return False

    try:
        msg = MIMEMultipart()
        msg["From"] = settings.email_from
        msg["To"] = settings.email_to
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))

        server = smtplib.SMTP(settings.smtp_host, settings.smtp_port)
        server.starttls()
        server.login(settings.smtp_user, settings.smtp_password)
        server.sendmail(settings.email_from, [settings.email_to], msg.as_string())
        server.quit()
        return True
    except (smtplib.SMTPException, OSError):
        return False


def notify_loop_transition(loop: str, ok: bool, detail: str) -> bool:
    """Mail when a loop starts failing or recovers. Steady states stay quiet."""
    if not settings.enable_email:
        return False
    subject = f"{'RECOVERED' if ok else 'FAILING'}: {loop}"
    body = f"Loop: {loop}\nStatus: {'OK' if ok else 'FAILING'}\nDetail: {detail}"
    return send_email(subject, body)
