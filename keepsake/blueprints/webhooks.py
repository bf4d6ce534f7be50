"""Webhooks blueprint — /stripe/webhooks

Receives Stripe webhook events.
Raw body is required for signature verification, so nothing may parse or
re-encode the body before verify_webhook_signature sees it.
"""

import logging

from flask import Blueprint, request, jsonify

from keepsake.errors import AuthError
from keepsake.services.stripe_service import verify_webhook_signature, handle_webhook_event

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


@webhooks_bp.route("/webhooks", methods=["POST"])
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body bytes (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET (400 on failure)
    3. Pass to handle_webhook_event (idempotent via stripe_events table)
    4. Return 200 to acknowledge receipt, dispatched or not
    """
    payload = request.get_data(cache=False)
    sig_header = request.headers.get("Stripe-Signature")

    # --- Verify signature ---
    try:
        event = verify_webhook_signature(payload, sig_header)
    except AuthError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return jsonify({"error": e.public_message}), 400

    # --- Process event (idempotent) ---
    success, message = handle_webhook_event(event)

    if success:
        return jsonify({"status": message}), 200
    else:
        logger.error(f"Webhook processing failed: {message}")
        return jsonify({"error": message}), 500
