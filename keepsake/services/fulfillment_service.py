"""Fulfillment service — email the customer their access link and QR code.

Called by the webhook dispatcher once a checkout completes. By then Stripe
has already been acknowledged, so a mail failure is logged and dropped:
the customer-visible symptom is a missing email, never a failed payment.
"""

import logging
from urllib.parse import quote

from flask import current_app

from keepsake.errors import MailError
from keepsake.services.email_service import send_email

logger = logging.getLogger(__name__)

ACCESS_EMAIL_SUBJECT = "Thank You for Your Purchase!"


def build_access_url(identity):
    """Customer page URL with the identity as the ?name= query parameter."""
    base = current_app.config["ACCESS_PAGE_URL"]
    return f"{base}?name={quote(identity, safe='')}"


def build_qr_code_url(link):
    """Image URL of a QR code encoding link, rendered by the QR service."""
    base = current_app.config.get(
        "QR_SERVICE_URL", "https://api.qrserver.com/v1/create-qr-code/"
    )
    size = current_app.config.get("QR_CODE_SIZE", 200)
    return f"{base}?data={quote(link, safe='')}&size={size}x{size}"


def send_access_email(identity, email):
    """Send the access link + QR code for a paid submission.

    Returns True if the email was handed to the SMTP server, False otherwise.
    """
    access_url = build_access_url(identity)
    qr_code_url = build_qr_code_url(access_url)

    try:
        send_email(
            to=email,
            subject=ACCESS_EMAIL_SUBJECT,
            template="emails/access_link.html",
            context={
                "access_url": access_url,
                "qr_code_url": qr_code_url,
            },
        )
    except MailError as e:
        logger.error(f"Access email for {identity} to {email} failed: {e}")
        return False

    logger.info(f"Access email for {identity} sent to {email}")
    return True
