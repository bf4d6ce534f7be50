"""Storage service — submission assets in Supabase Storage (prod) or local disk (dev).

Supabase bucket: SUPABASE_STORAGE_BUCKET (private; reads go through signed URLs).
Local fallback: LOCAL_UPLOAD_DIR, or instance/uploads/ when unset.

Provides put / list-by-prefix / signed-read-URL over either backend.
Unlike a best-effort cache, a failed write raises StorageError: the caller
must not record a submission whose assets are missing.
"""

import logging
import os
from urllib.parse import quote

import requests
from flask import current_app

from keepsake.errors import StorageError

logger = logging.getLogger(__name__)


def _get_supabase_config():
    """Return Supabase storage config if available, else None."""
    url = current_app.config.get("SUPABASE_URL")
    key = current_app.config.get("SUPABASE_SERVICE_KEY")
    bucket = current_app.config.get("SUPABASE_STORAGE_BUCKET", "submissions")

    if url and key:
        return {"url": url.rstrip("/"), "key": key, "bucket": bucket}
    return None


def _local_root():
    return current_app.config.get("LOCAL_UPLOAD_DIR") or os.path.join(
        current_app.instance_path, "uploads"
    )


def put_object(path, data, content_type=None):
    """Store bytes under path. Returns the object key (== path).

    Raises StorageError if the backend rejects the write.
    """
    content_type = content_type or "application/octet-stream"

    supabase = _get_supabase_config()
    if supabase:
        _upload_supabase(supabase, path, data, content_type)
    else:
        _upload_local(path, data)
    return path


def list_objects(prefix):
    """Return every object key under prefix (a "folder"), sorted by key."""
    prefix = prefix.strip("/")
    supabase = _get_supabase_config()
    if supabase:
        return _list_supabase(supabase, prefix)
    return _list_local(prefix)


def create_signed_url(path, expires_in):
    """Return a time-limited read URL for one object."""
    supabase = _get_supabase_config()
    if supabase:
        return _sign_supabase(supabase, path, expires_in)
    # Dev fallback: served by the /uploads route registered in debug mode
    return f"/uploads/{quote(path)}"


# ──────────────────────────────────────────────
# Supabase
# ──────────────────────────────────────────────

def _auth_headers(config):
    return {"Authorization": f"Bearer {config['key']}"}


def _upload_supabase(config, path, data, content_type):
    url = f"{config['url']}/storage/v1/object/{config['bucket']}/{quote(path)}"

    headers = _auth_headers(config)
    headers["Content-Type"] = content_type

    try:
        resp = requests.post(url, headers=headers, data=data, timeout=30)
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"Supabase upload failed for {path}: {e}")
        raise StorageError(f"Upload failed for {path}: {e}") from e

    logger.info(f"Uploaded to Supabase: {path}")


def _list_supabase(config, prefix):
    url = f"{config['url']}/storage/v1/object/list/{config['bucket']}"
    body = {
        "prefix": prefix,
        "limit": 1000,
        "offset": 0,
        "sortBy": {"column": "name", "order": "asc"},
    }

    try:
        resp = requests.post(url, headers=_auth_headers(config), json=body, timeout=15)
        resp.raise_for_status()
        entries = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.error(f"Supabase list failed for {prefix}: {e}")
        raise StorageError(f"Listing failed for {prefix}: {e}") from e

    # Entries are relative to the prefix folder; sub-folders have no id.
    keys = [
        f"{prefix}/{entry['name']}"
        for entry in entries
        if entry.get("id") is not None and entry.get("name")
    ]
    return sorted(keys)


def _sign_supabase(config, path, expires_in):
    url = f"{config['url']}/storage/v1/object/sign/{config['bucket']}/{quote(path)}"

    try:
        resp = requests.post(
            url,
            headers=_auth_headers(config),
            json={"expiresIn": int(expires_in)},
            timeout=15,
        )
        resp.raise_for_status()
        signed_path = resp.json()["signedURL"]
    except (requests.RequestException, ValueError, KeyError) as e:
        logger.error(f"Supabase sign failed for {path}: {e}")
        raise StorageError(f"Signing failed for {path}: {e}") from e

    return f"{config['url']}/storage/v1{signed_path}"


# ──────────────────────────────────────────────
# Local disk (dev fallback)
# ──────────────────────────────────────────────

def _upload_local(path, data):
    root = _local_root()
    filepath = os.path.join(root, path)

    try:
        os.makedirs(os.path.dirname(filepath), exist_ok=True)
        with open(filepath, "wb") as f:
            f.write(data)
    except OSError as e:
        logger.error(f"Local upload failed for {path}: {e}")
        raise StorageError(f"Upload failed for {path}: {e}") from e

    logger.info(f"Uploaded locally: {filepath}")


def _list_local(prefix):
    folder = os.path.join(_local_root(), prefix)
    if not os.path.isdir(folder):
        return []

    keys = []
    for dirpath, _dirnames, filenames in os.walk(folder):
        for filename in filenames:
            rel = os.path.relpath(os.path.join(dirpath, filename), _local_root())
            keys.append(rel.replace(os.sep, "/"))
    return sorted(keys)
