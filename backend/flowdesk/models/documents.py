from __future__ import annotations

from ..extensions import db
from flowdesk.time_utils import to_utc_z


class DocumentSequence(db.Model):
    """
    Atomic per-owner, per-period document sequences.

    WHY: Prevent race conditions when generating document numbers.
    Invoices use a yearly period ("2024"), sales a monthly one ("202401").
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("owner_id", "document_type", "period", name="uq_doc_sequences_owner_type_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("owners.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    period = db.Column(db.String(8), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    owner = db.relationship("Owner", backref=db.backref("document_sequences", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "document_type": self.document_type,
            "period": self.period,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
