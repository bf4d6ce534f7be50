"""Submission model (the ledger).

One row per uploaded bundle, keyed by its identity. The identity doubles as
the storage prefix for the uploaded assets, so rows are written once and
never updated in place; a re-submission gets a new identity.
"""

from keepsake.extensions import db


class Submission(db.Model):
    __tablename__ = "submissions"

    identity = db.Column(db.String(255), primary_key=True)  # e.g. "ana-maria_1718000000000"
    name = db.Column(db.String(255), nullable=False)
    date = db.Column(db.String(50), nullable=True)  # as entered by the customer
    message = db.Column(db.Text, nullable=True)
    video_url = db.Column(db.String(500), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    asset_prefix = db.Column(db.String(255), nullable=False)  # == identity
    asset_keys = db.Column(db.JSON, default=list)  # storage keys, in upload order
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def to_dict(self):
        return {
            "identity": self.identity,
            "name": self.name,
            "date": self.date,
            "message": self.message,
            "video_url": self.video_url,
            "email": self.email,
            "asset_prefix": self.asset_prefix,
            "asset_keys": list(self.asset_keys or []),
        }

    def __repr__(self):
        return f"<Submission {self.identity}>"
