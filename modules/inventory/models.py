"""SQLAlchemy models for the parts catalog and its stock ledger."""

from datetime import datetime

from sqlalchemy import CheckConstraint

from extensions import db

# ---------- Transaction types ----------
# Every quantity change writes one of these with the signed delta it applied.
TRANSACTION_TYPES = ["restock", "checkout", "return", "consumption", "adjustment"]


class Part(db.Model):
    """A stocked component. ``quantity`` is the source of truth for availability."""

    __tablename__ = "parts"

    id = db.Column(db.Integer, primary_key=True)
    part_id = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(255), nullable=False)
    value = db.Column(db.String(100))
    footprint = db.Column(db.String(150))
    bin_id = db.Column(db.String(50))
    location_within_bin = db.Column(db.String(100))
    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_quantity = db.Column(db.Integer, nullable=False, default=0)
    part_link = db.Column(db.String(500))
    qr_code = db.Column(db.String(120))
    is_sensitive = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_parts_quantity_nonnegative"),
    )

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.min_quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "part_id": self.part_id,
            "description": self.description,
            "value": self.value,
            "footprint": self.footprint,
            "bin_id": self.bin_id,
            "location_within_bin": self.location_within_bin,
            "quantity": self.quantity,
            "min_quantity": self.min_quantity,
            "part_link": self.part_link,
            "qr_code": self.qr_code,
            "is_sensitive": self.is_sensitive,
            "is_low_stock": self.is_low_stock,
        }

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Part {self.part_id}: {self.quantity}>"


class Transaction(db.Model):
    """Immutable audit row. ``quantity`` is signed and equals the delta applied to the part."""

    __tablename__ = "transactions"

    id = db.Column(db.Integer, primary_key=True)
    part_id = db.Column(db.Integer, db.ForeignKey("parts.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    type = db.Column(db.String(20), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    part = db.relationship("Part")
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "part_id": self.part.part_id if self.part else None,
            "user": self.user.name if self.user else None,
            "type": self.type,
            "quantity": self.quantity,
            "notes": self.notes,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
