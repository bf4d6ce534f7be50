"""API blueprint — /api/*

Public JSON endpoints called by the keepsake frontend.

Route Map:
  POST /api/upload                  — store a submission (metadata + files)
  GET  /api/submissions/<identity>  — submission record + signed image URLs
  GET  /api/get-country             — caller's country code
  POST /api/checkout                — create a Stripe Checkout Session
  GET  /api/checkout/status         — poll a checkout session after redirect
"""

import logging

from flask import Blueprint, jsonify, request

from keepsake.errors import ValidationError
from keepsake.extensions import limiter
from keepsake.services.geo_service import get_client_ip, get_user_country
from keepsake.services.stripe_service import create_checkout_session, get_checkout_status
from keepsake.services.submission_service import create_submission, get_submission_with_urls

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__, url_prefix="/api")


@api_bp.route("/upload", methods=["POST"])
@limiter.limit("20 per hour")
def upload():
    """Accept a multipart upload: a JSON "data" field plus one or more "files".

    Returns: { message, status: "created", submission }
    """
    submission = create_submission(
        request.form.get("data"),
        request.files.getlist("files"),
    )
    return jsonify(
        message="Submission received.",
        status="created",
        submission=submission,
    ), 200


@api_bp.route("/submissions/<identity>")
def get_submission(identity):
    """Return a submission with time-limited URLs for its images."""
    return jsonify(get_submission_with_urls(identity)), 200


@api_bp.route("/get-country")
def get_country():
    """Resolve the caller's IP to a country code (falls back to the default)."""
    ip = get_client_ip(request)
    country = get_user_country(ip)
    logger.info(f"Country for {ip}: {country}")
    return jsonify(country=country), 200


@api_bp.route("/checkout", methods=["POST"])
@limiter.limit("30 per hour")
def checkout():
    """Create a Stripe Checkout Session and return its URL.

    Expects: { items: [{id, quantity}], email, identity }
    Returns: { url }
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid request.")

    url = create_checkout_session(
        items=data.get("items"),
        email=(data.get("email") or "").strip(),
        identity=(data.get("identity") or "").strip(),
        client_ip=get_client_ip(request),
    )
    return jsonify(url=url), 200


@api_bp.route("/checkout/status")
def checkout_status():
    """JSON endpoint polled by the success page with ?session_id=..."""
    session_id = request.args.get("session_id")
    if not session_id:
        raise ValidationError("session_id is required.")
    return jsonify(get_checkout_status(session_id)), 200
