"""Stripe service — all Stripe API calls and webhook handling.

Responsible for:
- Creating one-shot Stripe Checkout Sessions priced by the caller's country
- Verifying webhook signatures over the raw request body
- Dispatching checkout.session.completed to fulfillment
- Idempotency via stripe_events table
- Reporting checkout status back to the success page
"""

import json
import logging

import stripe
from flask import current_app
from sqlalchemy.exc import IntegrityError

from keepsake.errors import AuthError, InvalidItem, PaymentProviderError, ValidationError
from keepsake.extensions import db
from keepsake.models.stripe_event import StripeEvent
from keepsake.services.fulfillment_service import send_access_email
from keepsake.services.geo_service import resolve_pricing
from keepsake.services.pricing import get_plan

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Checkout Sessions
# ──────────────────────────────────────────────

def _validate_cart(items):
    """Check every cart line. Returns [(PricingEntry, quantity), ...].

    Raises InvalidItem for an empty cart, an unknown plan id, or a
    quantity that is not a positive integer.
    """
    if not isinstance(items, list) or not items:
        raise InvalidItem("Cart is empty.")

    lines = []
    for item in items:
        if not isinstance(item, dict):
            raise InvalidItem("Invalid cart item.")

        entry = get_plan(item.get("id"))
        if entry is None:
            raise InvalidItem(f"Unknown plan: {item.get('id')!r}")

        quantity = item.get("quantity", 1)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidItem(f"Invalid quantity for plan {entry.plan_id}.")

        lines.append((entry, quantity))
    return lines


def create_checkout_session(items, email, identity, client_ip):
    """Create a Stripe Checkout Session for the given cart.

    The submission identity and notification email ride along as session
    metadata; the webhook reads them back to know whom to fulfill.

    Returns the Stripe checkout session URL.
    Raises InvalidItem / ValidationError before calling Stripe,
    PaymentProviderError if Stripe rejects the request.
    """
    if not identity or not isinstance(identity, str):
        raise ValidationError("Submission identity is required.")
    if not email or not isinstance(email, str):
        raise ValidationError("Email is required.")

    lines = _validate_cart(items)

    country, currency, prices = resolve_pricing(client_ip)

    line_items = []
    for entry, quantity in lines:
        price = prices[entry.plan_id]
        line_items.append({
            "price_data": {
                "currency": price.currency,
                "product_data": {"name": price.name},
                "unit_amount": price.unit_amount,
            },
            "quantity": quantity,
        })

    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    site_url = current_app.config["SITE_URL"].rstrip("/")

    try:
        session = stripe.checkout.Session.create(
            payment_method_types=["card"],
            mode="payment",
            line_items=line_items,
            success_url=f"{site_url}/success.html?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{site_url}/cancel.html",
            customer_creation="always",
            metadata={
                "identity": identity,
                "email": email,
            },
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout session failed for {identity}: {e}")
        raise PaymentProviderError(str(e)) from e

    logger.info(
        f"Checkout session created for {identity} "
        f"({len(line_items)} item(s), {currency}, country={country})"
    )
    return session.url


def get_checkout_status(session_id):
    """Look up a checkout session (and its customer) for the success page.

    Returns a dict with status, payment_status, identity, customer_email.
    Raises PaymentProviderError on Stripe failures.
    """
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]

    try:
        session = stripe.checkout.Session.retrieve(session_id)

        customer_email = None
        customer_id = getattr(session, "customer", None)
        if customer_id:
            customer = stripe.Customer.retrieve(customer_id)
            customer_email = getattr(customer, "email", None)
    except stripe.StripeError as e:
        logger.warning(f"Failed to retrieve checkout session {session_id}: {e}")
        raise PaymentProviderError(str(e)) from e

    metadata = getattr(session, "metadata", None)
    return {
        "status": getattr(session, "status", None),
        "payment_status": getattr(session, "payment_status", None),
        "identity": getattr(metadata, "identity", None) if metadata else None,
        "customer_email": customer_email,
    }


# ──────────────────────────────────────────────
# Webhook Handling
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify a Stripe webhook signature and parse the event.

    payload must be the raw request body exactly as received; the signature
    is computed over those bytes.

    Returns the event as a plain dict.
    Raises AuthError on a missing/malformed header, a signature mismatch,
    a stale timestamp, or an unparseable body.
    """
    if not sig_header:
        raise AuthError("Missing signature")

    webhook_secret = current_app.config["STRIPE_WEBHOOK_SECRET"]

    try:
        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        stripe.WebhookSignature.verify_header(body, sig_header, webhook_secret)
        event = json.loads(body)
    except (stripe.SignatureVerificationError, UnicodeDecodeError, ValueError) as e:
        logger.warning(f"Webhook rejected: {e}")
        raise AuthError("Invalid signature") from e

    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise AuthError("Malformed event")

    return event


def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    Idempotency: the event id is claimed in stripe_events before dispatch.
    A redelivered (or concurrently delivered) event finds the claim and is
    acknowledged without dispatching again.

    Returns (success: bool, message: str).
    """
    event_id = event["id"]
    event_type = event["type"]

    # --- Idempotency check ---
    existing = StripeEvent.query.filter_by(
        stripe_event_id=event_id
    ).first()
    if existing:
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return True, "already_processed"

    claim = StripeEvent(stripe_event_id=event_id, event_type=event_type)
    db.session.add(claim)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info(f"Webhook event {event_id} claimed concurrently, skipping")
        return True, "already_processed"

    # --- Route to handler ---
    handlers = {
        "checkout.session.completed": _handle_checkout_completed,
    }

    handler = handlers.get(event_type)
    if handler is None:
        return True, "ignored"

    try:
        return True, handler(event)
    except Exception as e:
        logger.error(f"Error handling {event_type}: {e}", exc_info=True)
        db.session.rollback()
        # Release the claim so Stripe's retry gets a second chance
        db.session.delete(claim)
        db.session.commit()
        return False, str(e)


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _handle_checkout_completed(event):
    """Handle checkout.session.completed.

    Reads identity + email from the session metadata written by
    create_checkout_session and sends the access email once.
    """
    session = event["data"]["object"]
    metadata = session.get("metadata") or {}

    identity = metadata.get("identity")
    email = metadata.get("email")

    if not identity or not email:
        logger.warning(
            f"checkout.session.completed {session.get('id')} missing identity or email, skipping"
        )
        return "skipped"

    logger.info(f"Checkout completed for {identity}, sending access email to {email}")
    send_access_email(identity, email)
    return "processed"
