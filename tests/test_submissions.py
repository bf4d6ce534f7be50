"""Tests for submission intake and lookup.

Covers:
- Identity derivation (slug + millisecond suffix)
- Upload then lookup round trip (local storage fallback)
- Validation failures perform no storage or ledger writes
- Storage failure mid-upload leaves no ledger row
- Same-named files in one upload get distinct keys
- Client-chosen identities (IDENTITY_MODE=client), including folders
  left behind by a failed upload
- Lookup 404s (unknown identity, ledger row without assets)
"""

import json
from unittest.mock import patch

from conftest import make_upload

from keepsake.errors import StorageError
from keepsake.extensions import db
from keepsake.models.submission import Submission
from keepsake.services.storage_service import put_object as real_put
from keepsake.services.submission_service import derive_identity, slugify


METADATA = {
    "name": "Ana Maria",
    "date": "2024-06-12",
    "message": "Happy anniversary!",
    "video_url": "https://youtu.be/abc123",
    "email": "ana@example.com",
}


class TestIdentity:

    def test_slugify_folds_accents_and_spaces(self):
        assert slugify("  José da Silva!! ") == "jose-da-silva"

    def test_slugify_strips_path_characters(self):
        assert slugify("../../etc/passwd") == "etcpasswd"

    def test_derive_identity_appends_millis(self):
        assert derive_identity("Ana Maria", now_ms=1718000000000) == "ana-maria_1718000000000"

    def test_derive_identity_empty_slug_gets_placeholder(self):
        assert derive_identity("!!!", now_ms=5) == "keepsake_5"

    def test_same_name_different_time_gives_different_identity(self):
        assert derive_identity("Ana", now_ms=1) != derive_identity("Ana", now_ms=2)

    def test_long_name_slug_is_capped(self):
        identity = derive_identity("word " * 120, now_ms=1718000000000)
        slug, _, suffix = identity.rpartition("_")
        assert suffix == "1718000000000"
        assert len(slug) <= 100
        assert not slug.endswith("-")


class TestUpload:

    def test_upload_then_lookup_round_trip(self, client, app):
        resp = client.post(
            "/api/upload",
            data=make_upload(METADATA, files=[
                ("first.jpg", b"one"),
                ("second.png", b"two"),
            ]),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "created"

        submission = body["submission"]
        identity = submission["identity"]
        assert identity.startswith("ana-maria_")
        assert submission["asset_prefix"] == identity
        assert submission["email"] == "ana@example.com"
        assert len(submission["asset_keys"]) == 2
        for key in submission["asset_keys"]:
            assert key.startswith(f"{identity}/")
        assert submission["asset_keys"][0].endswith("_first.jpg")
        assert submission["asset_keys"][1].endswith("_second.png")

        with app.app_context():
            row = db.session.get(Submission, identity)
            assert row is not None
            assert row.message == "Happy anniversary!"

        lookup = client.get(f"/api/submissions/{identity}")
        assert lookup.status_code == 200
        data = lookup.get_json()
        assert data["name"] == "Ana Maria"
        assert data["video_url"] == "https://youtu.be/abc123"
        assert len(data["image_urls"]) == 2

    def test_files_are_written_under_identity_folder(self, client, upload_dir):
        resp = client.post(
            "/api/upload",
            data=make_upload(METADATA),
            content_type="multipart/form-data",
        )
        identity = resp.get_json()["submission"]["identity"]

        stored = list((upload_dir / identity).iterdir())
        assert len(stored) == 1
        assert stored[0].name.endswith("_photo.jpg")
        assert stored[0].read_bytes() == b"\xff\xd8jpeg-bytes"

    @patch("keepsake.services.submission_service.storage_service.put_object")
    def test_no_files_is_rejected_without_writes(self, mock_put, client):
        resp = client.post(
            "/api/upload",
            data=make_upload(METADATA, files=[]),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400
        assert "No files" in resp.get_json()["error"]
        mock_put.assert_not_called()
        assert Submission.query.count() == 0

    @patch("keepsake.services.submission_service.storage_service.put_object")
    def test_missing_metadata_is_rejected_without_writes(self, mock_put, client):
        resp = client.post(
            "/api/upload",
            data=make_upload(None),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400
        assert "missing" in resp.get_json()["error"]
        mock_put.assert_not_called()
        assert Submission.query.count() == 0

    @patch("keepsake.services.submission_service.storage_service.put_object")
    def test_unparseable_metadata_is_rejected_without_writes(self, mock_put, client):
        resp = client.post(
            "/api/upload",
            data=make_upload(raw="{not json"),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400
        mock_put.assert_not_called()
        assert Submission.query.count() == 0

    def test_metadata_must_be_an_object(self, client):
        resp = client.post(
            "/api/upload",
            data=make_upload(raw=json.dumps(["Ana"])),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400

    def test_name_is_required(self, client):
        resp = client.post(
            "/api/upload",
            data=make_upload({**METADATA, "name": "  "}),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400
        assert "Name" in resp.get_json()["error"]

    @patch("keepsake.services.submission_service.storage_service.put_object")
    def test_overlong_name_is_rejected_without_writes(self, mock_put, client):
        resp = client.post(
            "/api/upload",
            data=make_upload({**METADATA, "name": "a" * 600}),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400
        assert "Name" in resp.get_json()["error"]
        mock_put.assert_not_called()
        assert Submission.query.count() == 0

    @patch("keepsake.services.submission_service._now_ms", return_value=1718000000000)
    def test_same_filename_in_same_millisecond_gets_distinct_keys(
        self, mock_now, client, upload_dir
    ):
        resp = client.post(
            "/api/upload",
            data=make_upload(METADATA, files=[
                ("image.jpg", b"A"),
                ("image.jpg", b"B"),
            ]),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 200
        submission = resp.get_json()["submission"]
        identity = submission["identity"]
        keys = submission["asset_keys"]

        assert keys == [
            f"{identity}/1718000000000_image.jpg",
            f"{identity}/1718000000001_image.jpg",
        ]
        assert (upload_dir / keys[0]).read_bytes() == b"A"
        assert (upload_dir / keys[1]).read_bytes() == b"B"

        lookup = client.get(f"/api/submissions/{identity}")
        assert len(lookup.get_json()["image_urls"]) == 2

    def test_invalid_email_is_rejected(self, client):
        resp = client.post(
            "/api/upload",
            data=make_upload({**METADATA, "email": "not-an-email"}),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400

    @patch("keepsake.services.submission_service.storage_service.put_object")
    def test_storage_failure_skips_ledger_write(self, mock_put, client):
        mock_put.side_effect = [
            "ana-maria_1/1_first.jpg",
            StorageError("bucket unavailable"),
        ]

        resp = client.post(
            "/api/upload",
            data=make_upload(METADATA, files=[
                ("first.jpg", b"one"),
                ("second.jpg", b"two"),
            ]),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 500
        # Collaborator detail stays in the logs
        assert "bucket unavailable" not in resp.get_json()["error"]
        assert mock_put.call_count == 2
        assert Submission.query.count() == 0


class TestClientIdentityMode:

    def test_client_identity_is_used(self, client, app, monkeypatch):
        monkeypatch.setitem(app.config, "IDENTITY_MODE", "client")

        resp = client.post(
            "/api/upload",
            data=make_upload({**METADATA, "identity": "ana-maria_42"}),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 200
        assert resp.get_json()["submission"]["identity"] == "ana-maria_42"

    def test_reused_client_identity_is_rejected(self, client, app, monkeypatch):
        monkeypatch.setitem(app.config, "IDENTITY_MODE", "client")
        body = {**METADATA, "identity": "ana-maria_42"}

        first = client.post("/api/upload", data=make_upload(body),
                            content_type="multipart/form-data")
        assert first.status_code == 200

        second = client.post("/api/upload", data=make_upload(body),
                             content_type="multipart/form-data")
        assert second.status_code == 400
        assert "already in use" in second.get_json()["error"]

    def test_identity_with_orphaned_assets_is_rejected(self, client, app, monkeypatch, upload_dir):
        monkeypatch.setitem(app.config, "IDENTITY_MODE", "client")
        body = {**METADATA, "identity": "ana_42"}

        # First attempt stores one file, then fails on the second
        calls = []

        def put_then_fail(path, data, content_type=None):
            calls.append(path)
            if len(calls) > 1:
                raise StorageError("bucket unavailable")
            return real_put(path, data, content_type)

        with patch(
            "keepsake.services.submission_service.storage_service.put_object",
            side_effect=put_then_fail,
        ):
            first = client.post(
                "/api/upload",
                data=make_upload(body, files=[("old.jpg", b"old"), ("old2.jpg", b"x")]),
                content_type="multipart/form-data",
            )
        assert first.status_code == 500
        assert len(list((upload_dir / "ana_42").iterdir())) == 1

        retry = client.post(
            "/api/upload",
            data=make_upload(body, files=[("new.jpg", b"new")]),
            content_type="multipart/form-data",
        )
        assert retry.status_code == 400
        assert "already in use" in retry.get_json()["error"]
        assert Submission.query.count() == 0
        assert len(list((upload_dir / "ana_42").iterdir())) == 1

    def test_concurrent_duplicate_does_not_overwrite_first_row(self, client, app, monkeypatch):
        monkeypatch.setitem(app.config, "IDENTITY_MODE", "client")
        with app.app_context():
            db.session.add(Submission(
                identity="ana_7", name="First", asset_prefix="ana_7", asset_keys=[],
            ))
            db.session.commit()

        # Both requests passed the existence check before either committed
        with patch(
            "keepsake.services.submission_service.db.session.get", return_value=None,
        ):
            resp = client.post(
                "/api/upload",
                data=make_upload({**METADATA, "identity": "ana_7"}),
                content_type="multipart/form-data",
            )

        assert resp.status_code == 400
        with app.app_context():
            assert db.session.get(Submission, "ana_7").name == "First"

    def test_unsafe_client_identity_is_rejected(self, client, app, monkeypatch):
        monkeypatch.setitem(app.config, "IDENTITY_MODE", "client")

        resp = client.post(
            "/api/upload",
            data=make_upload({**METADATA, "identity": "../other"}),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400
        assert Submission.query.count() == 0


class TestLookup:

    def test_unknown_identity_returns_404(self, client):
        resp = client.get("/api/submissions/nobody_123")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "Submission not found."

    def test_ledger_row_without_assets_returns_404(self, client, app):
        with app.app_context():
            db.session.add(Submission(
                identity="ghost_1",
                name="Ghost",
                asset_prefix="ghost_1",
                asset_keys=[],
            ))
            db.session.commit()

        resp = client.get("/api/submissions/ghost_1")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "No images found."

    def test_lookup_does_not_match_longer_identity(self, client, app, upload_dir):
        # "ana_1" must not pick up files stored for "ana_12"
        (upload_dir / "ana_12").mkdir(parents=True)
        (upload_dir / "ana_12" / "1_a.jpg").write_bytes(b"x")
        with app.app_context():
            db.session.add(Submission(
                identity="ana_1", name="Ana", asset_prefix="ana_1", asset_keys=[],
            ))
            db.session.commit()

        resp = client.get("/api/submissions/ana_1")
        assert resp.status_code == 404

    def test_lookup_signs_every_key_in_order(self, client, app):
        with app.app_context():
            db.session.add(Submission(
                identity="ana_1", name="Ana", asset_prefix="ana_1",
                asset_keys=["ana_1/1_a.jpg", "ana_1/2_b.jpg"],
            ))
            db.session.commit()

        with patch(
            "keepsake.services.submission_service.storage_service.list_objects",
            return_value=["ana_1/1_a.jpg", "ana_1/2_b.jpg"],
        ), patch(
            "keepsake.services.submission_service.storage_service.create_signed_url",
            side_effect=lambda key, ttl: f"https://signed/{key}?ttl={ttl}",
        ):
            resp = client.get("/api/submissions/ana_1")

        assert resp.status_code == 200
        assert resp.get_json()["image_urls"] == [
            "https://signed/ana_1/1_a.jpg?ttl=1800",
            "https://signed/ana_1/2_b.jpg?ttl=1800",
        ]
