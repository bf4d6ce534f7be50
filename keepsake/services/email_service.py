"""
Email service for transactional mail.

Uses Gmail SMTP (smtp.gmail.com) with an App Password to send HTML emails
rendered from Jinja2 templates under templates/emails/.

Usage:
    from keepsake.services.email_service import send_email

    send_email(
        to="user@example.com",
        subject="Hello",
        template="emails/access_link.html",
        context={"access_url": "https://..."},
    )
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app, render_template

from keepsake.errors import MailError

logger = logging.getLogger(__name__)


def _send_smtp(app, msg):
    """Deliver a built message over SMTP. Raises MailError on any failure."""
    host = app.config.get("MAIL_SMTP_HOST", "smtp.gmail.com")
    port = app.config.get("MAIL_SMTP_PORT", 587)
    username = app.config.get("MAIL_USERNAME")
    password = app.config.get("MAIL_PASSWORD")

    if not username or not password:
        raise MailError("MAIL_USERNAME or MAIL_PASSWORD not configured.")

    try:
        with smtplib.SMTP(host, port, timeout=30) as server:
            server.ehlo()
            server.starttls()
            server.ehlo()
            server.login(username, password)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        raise MailError(f"Failed to send email to {msg['To']}: {e}") from e

    logger.info(f"Email sent to {msg['To']} — {msg['Subject']}")


def send_email(to, subject, template, context=None, reply_to=None):
    """
    Send a templated HTML email and block until the SMTP server accepts it.

    Args:
        to:        Recipient email address (str or list).
        subject:   Email subject line.
        template:  Path to Jinja2 HTML template (relative to templates/).
        context:   Dict of variables to pass to the template.
        reply_to:  Optional reply-to address.

    Raises MailError if the message could not be delivered.
    """
    app = current_app._get_current_object()
    context = context or {}

    from_name = app.config.get("MAIL_FROM_NAME", "ArtJoy")
    from_email = app.config.get("MAIL_FROM_ADDRESS") or app.config.get("MAIL_USERNAME", "")

    html_body = render_template(template, **context)

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_email}>"
    msg["To"] = to if isinstance(to, str) else ", ".join(to)

    if reply_to:
        msg["Reply-To"] = reply_to

    msg.attach(MIMEText(html_body, "html"))

    _send_smtp(app, msg)
