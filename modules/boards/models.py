"""SQLAlchemy models for board designs, their BOMs and build records."""

import logging
from dataclasses import replace
from datetime import datetime
from typing import List, Optional

from sqlalchemy import CheckConstraint, UniqueConstraint, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import InvalidInput, InventoryError, PersistenceFailure
from extensions import db
from modules.boards.bom import BomRow, merge_rows
from modules.inventory.ledger import require_admin
from modules.inventory.models import Part

logger = logging.getLogger(__name__)


class Board(db.Model):
    """A reusable PCB assembly design (name + version)."""

    __tablename__ = "boards"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    version = db.Column(db.String(50), nullable=False, default="1.0")
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    output_part_id = db.Column(db.Integer, db.ForeignKey("parts.id"))  # finished good, optional
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    board_parts = db.relationship(
        "BoardPart",
        back_populates="board",
        order_by="BoardPart.id",
        cascade="all, delete-orphan",
    )
    output_part = db.relationship("Part")

    __table_args__ = (
        UniqueConstraint("name", "version", name="uq_board_name_version"),
    )

    @property
    def label(self) -> str:
        return f"{self.name} v{self.version}"

    def can_build(self, quantity: int = 1) -> bool:
        """Quick readiness flag for listings; the build engine re-checks under lock."""
        return bool(self.board_parts) and all(
            bp.part.quantity >= bp.quantity_required * quantity for bp in self.board_parts
        )

    def to_dict(self, with_parts: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "is_active": self.is_active,
            "output_part_id": self.output_part.part_id if self.output_part else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "can_build": self.can_build(),
        }
        if with_parts:
            data["board_parts"] = [bp.to_dict() for bp in self.board_parts]
        return data


class BoardPart(db.Model):
    """One BOM line: a part and how many of it one board needs."""

    __tablename__ = "board_parts"

    id = db.Column(db.Integer, primary_key=True)
    board_id = db.Column(db.Integer, db.ForeignKey("boards.id", ondelete="CASCADE"), nullable=False)
    part_id = db.Column(db.Integer, db.ForeignKey("parts.id"), nullable=False, index=True)
    quantity_required = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    board = db.relationship("Board", back_populates="board_parts")
    part = db.relationship("Part")

    __table_args__ = (
        UniqueConstraint("board_id", "part_id", name="uq_board_part"),
        CheckConstraint("quantity_required > 0", name="ck_board_parts_quantity_positive"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "part_id": self.part.part_id,
            "description": self.part.description,
            "quantity_required": self.quantity_required,
            "available": self.part.quantity,
            "notes": self.notes,
        }


class BoardBuild(db.Model):
    """Immutable record of a completed build. Written only by the build engine."""

    __tablename__ = "board_builds"

    id = db.Column(db.Integer, primary_key=True)
    board_id = db.Column(db.Integer, db.ForeignKey("boards.id"), nullable=False, index=True)
    built_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    quantity_built = db.Column(db.Integer, nullable=False, default=1)
    notes = db.Column(db.Text)
    built_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    board = db.relationship("Board")
    builder = db.relationship("User")

    __table_args__ = (
        CheckConstraint("quantity_built >= 1", name="ck_board_builds_quantity_positive"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "board": self.board.label if self.board else None,
            "built_by": self.builder.name if self.builder else None,
            "quantity_built": self.quantity_built,
            "notes": self.notes,
            "built_at": self.built_at.isoformat() if self.built_at else None,
        }


# ---------- Domain operations ----------

def match_existing_parts(rows: List[BomRow]) -> List[BomRow]:
    """
    Pre-fill part codes from inventory: exact part code first, then the
    first part sharing the row's Value or Footprint.
    """
    matched = []
    for row in rows:
        part = Part.query.filter_by(part_id=row.part_id).first() if row.part_id else None
        if part is None:
            conditions = []
            if row.value:
                conditions.append(Part.value == row.value)
            if row.footprint:
                conditions.append(Part.footprint == row.footprint)
            if conditions:
                part = Part.query.filter(or_(*conditions)).order_by(Part.id).first()
        if part is not None:
            row = replace(row, part_id=part.part_id, description=part.description)
        matched.append(row)
    return matched


def create_board(
    name: str,
    version: Optional[str],
    description: Optional[str],
    rows: List[BomRow],
    actor,
    output_part_id: Optional[str] = None,
    default_min_quantity: int = 5,
) -> Board:
    """
    Create a board and its BOM in one transaction. Parts the BOM names that
    are not stocked yet are created with quantity 0.
    """
    user = require_admin(actor)
    name = (name or "").strip()
    version = (version or "").strip() or "1.0"
    if not name:
        raise InvalidInput("Board name is required")

    rows = merge_rows(rows)
    if not rows:
        raise InvalidInput("A board needs at least one BOM line")
    missing = [r for r in rows if not r.part_id]
    if missing:
        raise InvalidInput(f"{len(missing)} row(s) missing Part ID")

    if Board.query.filter_by(name=name, version=version).first():
        raise InvalidInput(f"{name} v{version} already exists")

    try:
        parts = {}
        for row in rows:
            part = Part.query.filter_by(part_id=row.part_id).first()
            if part is None:
                if not row.description:
                    raise InvalidInput(f"New part {row.part_id} needs a description")
                part = Part(
                    part_id=row.part_id,
                    description=row.description,
                    value=row.value or None,
                    footprint=row.footprint or None,
                    bin_id=row.bin_id or None,
                    location_within_bin=row.location_within_bin or None,
                    quantity=0,
                    min_quantity=row.min_quantity if row.min_quantity is not None else default_min_quantity,
                    part_link=row.part_link or None,
                    qr_code=f"QR-{row.part_id}",
                    is_sensitive=row.is_sensitive,
                )
                db.session.add(part)
                db.session.flush()
            parts[row.part_id] = part

        output_part = None
        if output_part_id:
            output_part = Part.query.filter_by(part_id=output_part_id.strip()).first()
            if output_part is None:
                raise InvalidInput(f"Output part {output_part_id} not found")
            if output_part.part_id in parts:
                raise InvalidInput("A board cannot consume its own output part")

        board = Board(
            name=name,
            version=version,
            description=(description or "").strip() or None,
            output_part_id=output_part.id if output_part else None,
            created_by=user.id,
        )
        db.session.add(board)
        db.session.flush()

        for row in rows:
            db.session.add(BoardPart(
                board_id=board.id,
                part_id=parts[row.part_id].id,
                quantity_required=row.quantity,
                notes=f"Refs: {row.references}" if row.references else None,
            ))
        db.session.commit()
    except InventoryError:
        db.session.rollback()
        raise
    except IntegrityError as exc:
        db.session.rollback()
        raise InvalidInput(f"Could not create {name} v{version}: duplicate data") from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error(f"Board creation failed: {exc}")
        raise PersistenceFailure(f"Could not create {name} v{version}") from exc

    logger.info(f"Board {board.label} created with {len(rows)} BOM lines by user {user.id}")
    return board


def deactivate_board(board: Board, actor) -> Board:
    require_admin(actor)
    board.is_active = False
    db.session.commit()
    logger.info(f"Board {board.label} deactivated")
    return board


def delete_board(board: Board, actor) -> None:
    """Hard delete, only for boards that were never built; build records stay immutable."""
    require_admin(actor)
    if BoardBuild.query.filter_by(board_id=board.id).first() is not None:
        raise InvalidInput(f"{board.label} has build history; deactivate it instead")
    label = board.label
    db.session.delete(board)
    db.session.commit()
    logger.info(f"Board {label} deleted")
