"""
Board build engine.

A build consumes ``quantity_required * quantity`` of every BOM part. It runs
in two phases:

1. Feasibility: one SELECT over all BOM parts; any shortfall rejects the
   build before anything is written.
2. Commit: inside a single database transaction the part rows are locked
   in primary-key order, stock is re-validated against the latest committed
   values, each counter is decremented with a conditional UPDATE, and one
   consumption Transaction per part plus one BoardBuild are inserted.

Either every effect of the commit phase is visible or none is. The engine
is not idempotent: each successful call is a new build.
"""
from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable, Iterable, List, Optional, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from errors import (
    BoardNotFound,
    ConcurrentConflict,
    InsufficientStock,
    InvalidInput,
    InventoryError,
    PersistenceFailure,
    Shortfall,
)
from extensions import db
from modules.boards.models import Board, BoardBuild
from modules.inventory.ledger import require_actor
from modules.inventory.models import Part, Transaction

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATEs PostgreSQL uses when it aborts a transaction to keep it serializable
RETRYABLE_SQLSTATES = {"40001", "40P01"}


@dataclass(frozen=True)
class Requirement:
    part_pk: int
    part_id: str
    units: int


@dataclass(frozen=True)
class ConsumedPart:
    part_id: str
    units_consumed: int


@dataclass
class BuildResult:
    build_id: int
    board: str
    quantity: int
    consumed: List[ConsumedPart] = field(default_factory=list)
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "build_id": self.build_id,
            "consumed": [asdict(c) for c in self.consumed],
            "message": self.message,
        }


# ---------- Helpers ----------
def _validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidInput("Build quantity must be an integer of at least 1")
    return quantity


def _load_board(board_id) -> Board:
    board = None
    if isinstance(board_id, int) and not isinstance(board_id, bool):
        board = db.session.get(Board, board_id)
    if board is None or not board.is_active:
        raise BoardNotFound(f"Board {board_id} does not exist or is not active")
    return board


def requirements_for(board: Board, quantity: int) -> List[Requirement]:
    if not board.board_parts:
        raise InvalidInput(f"{board.label} has no BOM lines")
    return [
        Requirement(part_pk=bp.part_id, part_id=bp.part.part_id, units=bp.quantity_required * quantity)
        for bp in board.board_parts
    ]


def _read_stock(part_pks: Iterable[int], lock: bool = False) -> dict[int, int]:
    """Current counters for ``part_pks`` in one statement; optionally row-locked."""
    stmt = select(Part.id, Part.quantity).where(Part.id.in_(list(part_pks))).order_by(Part.id)
    if lock:
        stmt = stmt.with_for_update()
    return {row.id: row.quantity for row in db.session.execute(stmt)}


def _shortfalls(requirements: Iterable[Requirement], stock: dict[int, int]) -> List[Shortfall]:
    missing = []
    for req in requirements:
        available = stock.get(req.part_pk, 0)
        if available < req.units:
            missing.append(Shortfall(part_id=req.part_id, required=req.units, available=available))
    return missing


def _shortfall_message(label: str, shortfalls: List[Shortfall]) -> str:
    listed = ", ".join(f"{s.part_id} (need {s.required}, have {s.available})" for s in shortfalls)
    return f"Insufficient stock to build {label}: {listed}"


def _sqlstate(exc: SQLAlchemyError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def _is_postgres() -> bool:
    return db.session.get_bind().dialect.name == "postgresql"


def _apply_statement_timeout(timeout: Optional[float]) -> None:
    """Bound every statement of the current PostgreSQL transaction.
    SQLite already waits at most its busy timeout (set in create_app)."""
    if timeout and _is_postgres():
        db.session.execute(
            select(func.set_config("statement_timeout", f"{int(timeout * 1000)}ms", True))
        )


def _begin_commit_phase(isolation_level: Optional[str], timeout: Optional[float]) -> None:
    """
    Start a fresh transaction for the write phase.
    PostgreSQL gets the requested isolation level and a statement timeout;
    SQLite serializes writers itself and waits up to its busy timeout.
    """
    if not _is_postgres():
        return
    # nothing has been written yet; end the read transaction so the
    # isolation level applies to a new one
    db.session.commit()
    if isolation_level:
        db.session.connection(execution_options={"isolation_level": isolation_level})
    _apply_statement_timeout(timeout)


# ---------- Public API ----------
def check_feasibility(board: Board, quantity: int = 1) -> List[Shortfall]:
    """Shortfalls for building ``quantity`` of ``board``; empty means feasible."""
    quantity = _validate_quantity(quantity)
    requirements = requirements_for(board, quantity)
    return _shortfalls(requirements, _read_stock(r.part_pk for r in requirements))


def build_board(
    board_id: int,
    quantity: int = 1,
    actor=None,
    notes: Optional[str] = None,
    *,
    isolation_level: Optional[str] = "SERIALIZABLE",
    timeout: Optional[float] = None,
) -> BuildResult:
    """
    Build ``quantity`` units of the board, consuming its BOM atomically.

    Raises InvalidInput, BoardNotFound, InsufficientStock, ConcurrentConflict
    or PersistenceFailure. None of them leaves a partial effect.
    """
    quantity = _validate_quantity(quantity)
    try:
        # the feasibility read is bounded like the commit phase
        _apply_statement_timeout(timeout)
        user_id = require_actor(actor).id
        board = _load_board(board_id)
        board_pk, label = board.id, board.label
        requirements = requirements_for(board, quantity)
        shortfalls = check_feasibility(board, quantity)
    except SQLAlchemyError as exc:
        db.session.rollback()
        if _sqlstate(exc) in RETRYABLE_SQLSTATES:
            raise ConcurrentConflict(f"Concurrent update while reading board {board_id}; nothing was consumed") from exc
        logger.error(f"Feasibility read for board {board_id} failed: {exc}")
        raise PersistenceFailure(f"Could not read stock for board {board_id}; nothing was consumed") from exc

    if shortfalls:
        logger.warning(f"Build rejected: {_shortfall_message(label, shortfalls)}")
        raise InsufficientStock(_shortfall_message(label, shortfalls), shortfalls)

    try:
        _begin_commit_phase(isolation_level, timeout)

        # re-validate against committed stock, under lock
        stock = _read_stock((r.part_pk for r in requirements), lock=True)
        shortfalls = _shortfalls(requirements, stock)
        if shortfalls:
            raise InsufficientStock(_shortfall_message(label, shortfalls), shortfalls)

        build = BoardBuild(board_id=board_pk, built_by=user_id, quantity_built=quantity,
                           notes=notes or None, built_at=datetime.utcnow())
        db.session.add(build)
        db.session.flush()
        build_id = build.id

        tx_notes = f"Build #{build_id}: {label} x{quantity}"
        if notes:
            tx_notes = f"{tx_notes} ({notes})"

        now = datetime.utcnow()
        for req in requirements:
            result = db.session.execute(
                update(Part)
                .where(Part.id == req.part_pk, Part.quantity >= req.units)
                .values(quantity=Part.quantity - req.units, updated_at=now),
                execution_options={"synchronize_session": False},
            )
            if result.rowcount != 1:
                raise ConcurrentConflict(f"Stock for {req.part_id} changed during the build; nothing was consumed")
            db.session.add(Transaction(part_id=req.part_pk, user_id=user_id, type="consumption",
                                       quantity=-req.units, notes=tx_notes, timestamp=now))

        db.session.commit()
    except InventoryError as exc:
        db.session.rollback()
        logger.warning(f"Build of {label} aborted: {exc.kind}: {exc.message}")
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        if _sqlstate(exc) in RETRYABLE_SQLSTATES:
            logger.warning(f"Build of {label} hit a serialization conflict: {exc}")
            raise ConcurrentConflict(f"Concurrent update while building {label}; nothing was consumed") from exc
        logger.error(f"Build of {label} failed: {exc}")
        raise PersistenceFailure(f"Could not record the build of {label}; nothing was consumed") from exc

    consumed = [ConsumedPart(part_id=r.part_id, units_consumed=r.units) for r in requirements]
    logger.info(f"Built {quantity} x {label} (build #{build_id}) by user {user_id}")
    return BuildResult(
        build_id=build_id,
        board=label,
        quantity=quantity,
        consumed=consumed,
        message=f"Built {quantity} x {label}",
    )


def run_with_retries(fn: Callable[[], T], attempts: int = 3, backoff: float = 0.1) -> T:
    """
    Call ``fn`` and retry it on retryable errors (ConcurrentConflict,
    PersistenceFailure) with linear backoff. Anything else propagates as is.
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return fn()
        except InventoryError as exc:
            if not exc.retryable:
                raise
            if attempt < attempts - 1:
                logger.warning(f"{exc.kind}, retrying ({attempt + 1}/{attempts})")
                time.sleep(backoff * (attempt + 1))
                continue
            raise PersistenceFailure("The operation could not be completed, please try again") from exc
    raise AssertionError("unreachable")  # pragma: no cover
