"""Submission service — intake and lookup of uploaded keepsake bundles.

Responsible for:
- Parsing and validating the upload metadata blob
- Deriving the submission identity (slug of the name + millisecond suffix)
- Writing every asset under <identity>/ before the ledger row is recorded
- Looking a submission up with signed read URLs for its assets
"""

import json
import logging
import re
import time
import unicodedata

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.utils import secure_filename

from keepsake.errors import NotFound, StorageError, ValidationError
from keepsake.extensions import db
from keepsake.models.submission import Submission
from keepsake.services import storage_service

logger = logging.getLogger(__name__)

# Simple email regex — not exhaustive, just sanity-check
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Client-chosen identities must be usable as a storage folder name.
IDENTITY_RE = re.compile(r"^[a-z0-9][a-z0-9_-]{0,199}$")

# Identities go into a String(255) column and Stripe metadata (500 chars max)
MAX_NAME_LENGTH = 200
MAX_SLUG_LENGTH = 100


def _now_ms():
    return int(time.time() * 1000)


def slugify(value):
    """Convert a string to a path-safe slug: lowercase, only a-z 0-9 and hyphens.

    Accents are folded to ASCII first so "José" becomes "jose".
    """
    value = unicodedata.normalize("NFKD", value or "")
    value = value.encode("ascii", "ignore").decode("ascii").lower()
    value = re.sub(r"[^a-z0-9\s-]", "", value)   # strip non-alphanumeric
    value = re.sub(r"[\s-]+", "-", value)          # collapse whitespace/hyphens
    return value.strip("-")


def derive_identity(name, now_ms=None):
    """Build a submission identity: slug(name) + "_" + milliseconds.

    Collisions are avoided by the time suffix, not by checking the ledger,
    so two uploads under the same name always land in different folders.
    """
    if now_ms is None:
        now_ms = _now_ms()
    slug = slugify(name)[:MAX_SLUG_LENGTH].rstrip("-")
    return f"{slug or 'keepsake'}_{now_ms}"


def parse_metadata(raw):
    """Parse the JSON metadata blob sent alongside the files.

    Returns a dict of cleaned fields. Raises ValidationError.
    """
    if not raw:
        raise ValidationError("Form data is missing.")

    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        raise ValidationError("Form data is not valid JSON.")

    if not isinstance(data, dict):
        raise ValidationError("Form data must be a JSON object.")

    def _field(key):
        value = data.get(key)
        return value.strip() if isinstance(value, str) else value

    fields = {
        "name": _field("name"),
        "date": _field("date"),
        "message": _field("message"),
        "video_url": _field("video_url") or None,
        "email": _field("email") or None,
        "identity": _field("identity") or None,
    }

    if not fields["name"] or not isinstance(fields["name"], str):
        raise ValidationError("Name is required.")
    if len(fields["name"]) > MAX_NAME_LENGTH:
        raise ValidationError(f"Name must be {MAX_NAME_LENGTH} characters or fewer.")
    if fields["email"] and not EMAIL_RE.match(str(fields["email"])):
        raise ValidationError("A valid email is required.")

    return fields


def _resolve_identity(fields):
    """Pick the identity according to IDENTITY_MODE."""
    mode = current_app.config.get("IDENTITY_MODE", "server")

    if mode == "client":
        identity = fields["identity"]
        if not identity or not IDENTITY_RE.match(str(identity)):
            raise ValidationError("A valid submission identity is required.")
        # Assets left behind by a failed intake also claim the folder
        if (db.session.get(Submission, identity) is not None
                or storage_service.list_objects(identity)):
            raise ValidationError("This submission identity is already in use.")
        return identity

    return derive_identity(fields["name"])


def create_submission(raw_metadata, files):
    """Validate an upload bundle, store its assets, and record the submission.

    Args:
        raw_metadata: The JSON string from the "data" form field.
        files:        List of Werkzeug FileStorage objects.

    Returns the persisted record as a dict.
    Raises ValidationError before any write; StorageError if a write fails
    (the ledger row is then never written).
    """
    fields = parse_metadata(raw_metadata)

    files = [f for f in (files or []) if f and f.filename]
    if not files:
        raise ValidationError("No files were uploaded.")

    identity = _resolve_identity(fields)

    # --- Store every asset first ---
    # Timestamps only move forward within one upload, so same-named files
    # written in the same millisecond still get distinct keys.
    asset_keys = []
    last_ts = 0
    for file in files:
        filename = secure_filename(file.filename) or "file"
        ts = max(_now_ms(), last_ts + 1)
        last_ts = ts
        path = f"{identity}/{ts}_{filename}"
        key = storage_service.put_object(path, file.read(), file.content_type)
        asset_keys.append(key)

    # --- Then the ledger row ---
    submission = Submission(
        identity=identity,
        name=fields["name"],
        date=fields["date"],
        message=fields["message"],
        video_url=fields["video_url"],
        email=fields["email"],
        asset_prefix=identity,
        asset_keys=asset_keys,
    )
    try:
        db.session.add(submission)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.warning(f"Submission {identity} was recorded by a concurrent upload")
        raise ValidationError("This submission identity is already in use.")
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to record submission {identity}: {e}", exc_info=True)
        raise StorageError(f"Ledger write failed for {identity}: {e}") from e

    logger.info(f"Submission {identity} created with {len(asset_keys)} asset(s)")
    return submission.to_dict()


def get_submission_with_urls(identity):
    """Return a submission record merged with signed URLs for its assets.

    Raises NotFound if the identity is unknown or has no stored assets.
    """
    submission = db.session.get(Submission, identity)
    if submission is None:
        raise NotFound("Submission not found.")

    keys = storage_service.list_objects(submission.asset_prefix)
    if not keys:
        raise NotFound("No images found.")

    ttl = current_app.config.get("SIGNED_URL_TTL_SECONDS", 1800)
    image_urls = [storage_service.create_signed_url(key, ttl) for key in keys]

    record = submission.to_dict()
    record["image_urls"] = image_urls
    return record
