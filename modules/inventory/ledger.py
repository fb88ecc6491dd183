"""
Stock ledger: the only write path for part quantities.

Every change runs a conditional UPDATE on the part counter and inserts
the matching Transaction row in the same database transaction, so the
counter and the audit log never drift apart. There is no read-then-write
fallback; if the conditional UPDATE does not match, nothing is written.

Read-side helpers derive "checked out" views by netting checkout and
return rows per (user, part).
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from errors import (
    InsufficientStock,
    InventoryError,
    InvalidInput,
    PartNotFound,
    PermissionDenied,
    PersistenceFailure,
    Shortfall,
)
from extensions import db
from models import User
from modules.inventory.models import TRANSACTION_TYPES, Part, Transaction

logger = logging.getLogger(__name__)

OUTSTANDING_TYPES = ("checkout", "return")


# ---------- Validation ----------
def require_actor(actor) -> User:
    """Resolve the acting user; audit rows must point at a real account."""
    actor_id = getattr(actor, "id", None)
    user = db.session.get(User, actor_id) if actor_id is not None else None
    if user is None:
        raise InvalidInput("Unknown actor")
    return user


def require_admin(actor) -> User:
    user = require_actor(actor)
    if not user.is_admin:
        raise PermissionDenied("Only admins can perform this operation")
    return user


def _positive(quantity, field: str = "quantity") -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidInput(f"{field} must be a positive integer")
    return quantity


def get_part(part_code: str, include_sensitive: bool = True) -> Part:
    """Look a part up by its string code."""
    part = Part.query.filter_by(part_id=(part_code or "").strip()).first()
    if part is None or (part.is_sensitive and not include_sensitive):
        raise PartNotFound(f"Part {part_code!r} not found in inventory")
    return part


# ---------- The atomic primitive ----------
def apply_stock_change(
    part: Part,
    delta: int,
    kind: str,
    actor,
    notes: Optional[str] = None,
    guard: Optional[Callable[[], None]] = None,
) -> Transaction:
    """
    Apply ``delta`` to the part counter and log it, all or nothing.

    ``guard`` runs after the new row is flushed, inside the same
    transaction; raising an InventoryError from it undoes the change.

    Raises InsufficientStock if the counter would go negative, and
    PersistenceFailure if the database rejects the write.
    """
    if kind not in TRANSACTION_TYPES:
        raise InvalidInput(f"Unknown transaction type: {kind}")
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise InvalidInput("Quantity change must be a nonzero integer")
    user = require_actor(actor)
    part_pk, part_code = part.id, part.part_id

    try:
        stmt = update(Part).where(Part.id == part_pk)
        if delta < 0:
            stmt = stmt.where(Part.quantity >= -delta)
        stmt = stmt.values(quantity=Part.quantity + delta, updated_at=datetime.utcnow())
        result = db.session.execute(stmt, execution_options={"synchronize_session": False})

        if result.rowcount != 1:
            available = db.session.execute(
                select(Part.quantity).where(Part.id == part_pk)
            ).scalar_one_or_none()
            db.session.rollback()
            if available is None:
                raise PartNotFound(f"Part {part_code!r} not found in inventory")
            logger.warning(f"Stock change rejected: {part_code} {delta:+d} (available {available})")
            raise InsufficientStock(
                f"Only {available} of {part_code} available",
                [Shortfall(part_id=part_code, required=-delta, available=available)],
            )

        tx = Transaction(part_id=part_pk, user_id=user.id, type=kind, quantity=delta, notes=notes or None)
        db.session.add(tx)
        if guard is not None:
            db.session.flush()
            try:
                guard()
            except InventoryError:
                db.session.rollback()
                raise
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error(f"Stock change failed for {part_code}: {exc}")
        raise PersistenceFailure("Could not record the stock change") from exc

    logger.info(f"{kind}: {part_code} {delta:+d} by user {user.id}")
    return tx


# ---------- Operations ----------
def restock(part: Part, quantity: int, actor, notes: Optional[str] = None) -> Transaction:
    require_admin(actor)
    return apply_stock_change(part, _positive(quantity), "restock", actor, notes)


def checkout(part: Part, quantity: int, actor, notes: Optional[str] = None) -> Transaction:
    return apply_stock_change(part, -_positive(quantity), "checkout", actor, notes)


def consume(part: Part, quantity: int, actor, notes: Optional[str] = None) -> Transaction:
    return apply_stock_change(part, -_positive(quantity), "consumption", actor, notes)


def return_parts(part: Part, quantity: int, actor, notes: Optional[str] = None) -> Transaction:
    quantity = _positive(quantity)
    code = part.part_id

    def over_return(held: int) -> InvalidInput:
        return InvalidInput(f"Cannot return {quantity}; you have {held} of {code} checked out")

    held = checked_out_quantity(actor, part)
    if quantity > held:
        raise over_return(held)

    def still_checked_out() -> None:
        # re-read under the write lock; the flushed return is already counted
        remaining = checked_out_quantity(actor, part)
        if remaining < 0:
            raise over_return(remaining + quantity)

    return apply_stock_change(part, quantity, "return", actor, notes, guard=still_checked_out)


def adjust(part: Part, delta: int, actor, notes: Optional[str] = None) -> Transaction:
    """Signed correction after a physical count."""
    require_admin(actor)
    return apply_stock_change(part, delta, "adjustment", actor, notes)


# ---------- Read side ----------
def checked_out_quantity(user, part: Part) -> int:
    """Net units ``user`` still holds: checkouts minus returns."""
    user_id = getattr(user, "id", None)
    if user_id is None:
        return 0
    total = db.session.execute(
        select(func.coalesce(func.sum(Transaction.quantity), 0)).where(
            Transaction.user_id == user_id,
            Transaction.part_id == part.id,
            Transaction.type.in_(OUTSTANDING_TYPES),
        )
    ).scalar_one()
    # checkouts are stored negative, returns positive
    return -int(total)


def ledger_balance(part: Part) -> int:
    """Sum of every signed transaction for the part."""
    return int(db.session.execute(
        select(func.coalesce(func.sum(Transaction.quantity), 0)).where(Transaction.part_id == part.id)
    ).scalar_one())


def outstanding_items(user_id: Optional[int] = None) -> list[dict]:
    """
    Items not yet returned, one row per (user, part) with a positive net.
    Built from the log in timestamp order.
    """
    query = (Transaction.query
             .filter(Transaction.type.in_(OUTSTANDING_TYPES))
             .order_by(Transaction.timestamp.asc(), Transaction.id.asc()))
    if user_id is not None:
        query = query.filter(Transaction.user_id == user_id)

    items: dict[tuple[int, int], dict] = {}
    for tx in query.all():
        key = (tx.user_id, tx.part_id)
        item = items.get(key)
        if item is None:
            item = items[key] = {
                "part_id": tx.part.part_id,
                "description": tx.part.description,
                "user_id": tx.user_id,
                "user_name": tx.user.name,
                "user_email": tx.user.email,
                "total_checked_out": 0,
                "last_checkout_date": None,
                "checkout_notes": [],
            }
        if tx.type == "checkout":
            item["total_checked_out"] += -tx.quantity
            item["last_checkout_date"] = tx.timestamp.isoformat()
            if tx.notes:
                item["checkout_notes"].append(tx.notes)
        else:
            item["total_checked_out"] -= tx.quantity

    return [item for item in items.values() if item["total_checked_out"] > 0]
