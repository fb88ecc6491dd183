"""Build engine: feasibility, atomic consumption, error taxonomy."""

import threading

import pytest
from sqlalchemy.exc import OperationalError

from app import create_app
from errors import (
    BoardNotFound,
    ConcurrentConflict,
    InsufficientStock,
    InvalidInput,
    PersistenceFailure,
    Shortfall,
)
from extensions import db
from models import User
from modules.boards import build
from modules.boards.models import Board, BoardBuild, BoardPart
from modules.inventory.models import Part, Transaction


@pytest.fixture()
def adcs(make_part, make_board):
    """ADCS v1.0 needs two PART-A and one PART-B per board."""
    def _make(a: int, b: int):
        part_a = make_part("PART-A", a)
        part_b = make_part("PART-B", b)
        board = make_board("ADCS", [(part_a, 2), (part_b, 1)])
        return board, part_a, part_b
    return _make


def _stock(*codes):
    db.session.expire_all()
    return [db.session.execute(db.select(Part.quantity).filter_by(part_id=c)).scalar_one() for c in codes]


def _assert_untouched(a: int, b: int):
    assert _stock("PART-A", "PART-B") == [a, b]
    assert Transaction.query.count() == 0
    assert BoardBuild.query.count() == 0


def test_shortfall_rejects_build_and_leaves_stock(adcs, member):
    board, _, _ = adcs(5, 0)

    with pytest.raises(InsufficientStock) as exc:
        build.build_board(board.id, 1, actor=member)

    assert exc.value.shortfalls == [Shortfall(part_id="PART-B", required=1, available=0)]
    assert exc.value.to_dict()["shortfalls"] == [{"part_id": "PART-B", "required": 1, "available": 0}]
    _assert_untouched(5, 0)


def test_build_consumes_every_bom_line(adcs, member):
    board, part_a, part_b = adcs(5, 3)

    result = build.build_board(board.id, 2, actor=member, notes="flight spare")

    assert _stock("PART-A", "PART-B") == [1, 1]
    assert [(c.part_id, c.units_consumed) for c in result.consumed] == [("PART-A", 4), ("PART-B", 2)]

    record = db.session.get(BoardBuild, result.build_id)
    assert record.quantity_built == 2
    assert record.built_by == member.id
    assert record.notes == "flight spare"

    txs = Transaction.query.order_by(Transaction.id).all()
    assert [(t.part_id, t.type, t.quantity) for t in txs] == [
        (part_a.id, "consumption", -4),
        (part_b.id, "consumption", -2),
    ]
    assert all(t.user_id == member.id for t in txs)
    assert all(t.notes.startswith(f"Build #{result.build_id}: ADCS v1.0 x2") for t in txs)


def test_result_payload(adcs, member):
    board, _, _ = adcs(2, 1)

    payload = build.build_board(board.id, 1, actor=member).to_dict()

    assert set(payload) == {"build_id", "consumed", "message"}
    assert payload["consumed"] == [
        {"part_id": "PART-A", "units_consumed": 2},
        {"part_id": "PART-B", "units_consumed": 1},
    ]
    assert "ADCS v1.0" in payload["message"]


def test_exact_stock_drains_to_zero(adcs, member):
    board, _, _ = adcs(2, 1)

    build.build_board(board.id, 1, actor=member)

    assert _stock("PART-A", "PART-B") == [0, 0]


def test_builds_are_not_idempotent(adcs, member):
    board, _, _ = adcs(4, 2)

    first = build.build_board(board.id, 1, actor=member)
    second = build.build_board(board.id, 1, actor=member)

    assert first.build_id != second.build_id
    assert _stock("PART-A", "PART-B") == [0, 0]
    assert BoardBuild.query.count() == 2
    with pytest.raises(InsufficientStock):
        build.build_board(board.id, 1, actor=member)


@pytest.mark.parametrize("quantity", [0, -1, 1.5, "2", True, None])
def test_invalid_quantity(adcs, member, quantity):
    board, _, _ = adcs(5, 3)

    with pytest.raises(InvalidInput):
        build.build_board(board.id, quantity, actor=member)

    _assert_untouched(5, 3)


def test_unknown_board(ctx, member):
    with pytest.raises(BoardNotFound):
        build.build_board(9999, 1, actor=member)


def test_inactive_board_cannot_be_built(make_part, make_board, member):
    part = make_part("PART-A", 10)
    board = make_board("Retired", [(part, 1)], is_active=False)

    with pytest.raises(BoardNotFound):
        build.build_board(board.id, 1, actor=member)
    assert _stock("PART-A") == [10]


def test_empty_bom_is_invalid(make_board, member):
    board = make_board("Blank", [])

    with pytest.raises(InvalidInput):
        build.build_board(board.id, 1, actor=member)


def test_unknown_actor_is_invalid(adcs):
    board, _, _ = adcs(5, 3)

    with pytest.raises(InvalidInput):
        build.build_board(board.id, 1, actor=None)
    _assert_untouched(5, 3)


def test_stock_taken_before_lock_is_insufficient(adcs, member, monkeypatch):
    # feasibility passed on a stale read; the locked re-read sees the real stock
    board, _, _ = adcs(5, 0)
    monkeypatch.setattr(build, "check_feasibility", lambda board, quantity=1: [])

    with pytest.raises(InsufficientStock) as exc:
        build.build_board(board.id, 1, actor=member)

    assert [s.part_id for s in exc.value.shortfalls] == ["PART-B"]
    _assert_untouched(5, 0)


def test_conditional_update_miss_rolls_back_earlier_lines(adcs, member, monkeypatch):
    board, _, _ = adcs(5, 0)
    real_read = build._read_stock

    def stale_read(part_pks, lock=False):
        stock = real_read(part_pks, lock=lock)
        return {pk: 1000 for pk in stock} if lock else stock

    monkeypatch.setattr(build, "check_feasibility", lambda board, quantity=1: [])
    monkeypatch.setattr(build, "_read_stock", stale_read)

    # PART-A is decremented first, then PART-B's guard fails
    with pytest.raises(ConcurrentConflict):
        build.build_board(board.id, 1, actor=member)

    _assert_untouched(5, 0)


def test_database_failure_mid_build(adcs, member, monkeypatch):
    board, _, _ = adcs(5, 3)

    def orphan_transaction(**fields):
        # user_id is NOT NULL, so the insert fails after the counters moved
        fields["user_id"] = None
        return Transaction(**fields)

    monkeypatch.setattr(build, "Transaction", orphan_transaction)
    with pytest.raises(PersistenceFailure) as exc:
        build.build_board(board.id, 1, actor=member)

    assert exc.value.retryable
    _assert_untouched(5, 3)


def test_serialization_failure_is_a_conflict(adcs, member, monkeypatch):
    board, _, _ = adcs(5, 3)

    class SerializationFailure(Exception):
        pgcode = "40001"

    def conflicting_begin(isolation_level, timeout):
        raise OperationalError("SELECT", {}, SerializationFailure("could not serialize access"))

    monkeypatch.setattr(build, "_begin_commit_phase", conflicting_begin)
    with pytest.raises(ConcurrentConflict):
        build.build_board(board.id, 1, actor=member)

    _assert_untouched(5, 3)


def test_check_feasibility_reports_every_short_line(adcs):
    board, _, _ = adcs(3, 1)

    shortfalls = build.check_feasibility(board, 2)

    assert shortfalls == [
        Shortfall(part_id="PART-A", required=4, available=3),
        Shortfall(part_id="PART-B", required=2, available=1),
    ]
    assert build.check_feasibility(board, 1) == []


def test_run_with_retries_retries_conflicts(ctx):
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConcurrentConflict("busy")
        return "done"

    assert build.run_with_retries(flaky, attempts=3, backoff=0) == "done"
    assert len(calls) == 3


def test_run_with_retries_gives_up_as_persistence_failure(ctx):
    def always_conflicts():
        raise ConcurrentConflict("busy")

    with pytest.raises(PersistenceFailure):
        build.run_with_retries(always_conflicts, attempts=2, backoff=0)


def test_run_with_retries_does_not_retry_business_errors(ctx):
    calls = []

    def short():
        calls.append(1)
        raise InsufficientStock("nope")

    with pytest.raises(InsufficientStock):
        build.run_with_retries(short, attempts=5, backoff=0)
    assert len(calls) == 1


def test_timeout_bounds_feasibility_read(adcs, member, monkeypatch):
    board, _, _ = adcs(5, 3)
    calls = []
    real_check = build.check_feasibility

    monkeypatch.setattr(build, "_apply_statement_timeout", lambda timeout: calls.append(("timeout", timeout)))
    monkeypatch.setattr(build, "check_feasibility",
                        lambda board, quantity=1: calls.append(("feasibility", quantity)) or real_check(board, quantity))

    build.build_board(board.id, 1, actor=member, timeout=2.5)

    # SQLite skips the separate commit-phase transaction
    assert calls == [("timeout", 2.5), ("feasibility", 1)]


def test_database_failure_during_feasibility_read(adcs, member, monkeypatch):
    board, _, _ = adcs(5, 3)

    def cancelled(board, quantity=1):
        raise OperationalError("SELECT", {}, Exception("canceling statement due to statement timeout"))

    monkeypatch.setattr(build, "check_feasibility", cancelled)
    with pytest.raises(PersistenceFailure):
        build.build_board(board.id, 1, actor=member)

    _assert_untouched(5, 3)


def test_concurrent_builds_never_oversell(tmp_path):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'lab.db'}",
        "SECRET_KEY": "test-secret",
        "BUILD_TIMEOUT_SECONDS": 30,
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"check_same_thread": False}},
    })
    with app.app_context():
        member = User(name="Max Member", email="member@lab.test", password="x", role="member")
        part = Part(part_id="PART-A", description="Gyro", quantity=10, min_quantity=0)
        board = Board(name="ADCS", version="1.0")
        board.board_parts = [BoardPart(part=part, quantity_required=1)]
        db.session.add_all([member, board])
        db.session.commit()
        member_id, board_id = member.id, board.id

    workers = 8
    barrier = threading.Barrier(workers)
    outcomes = []
    lock = threading.Lock()

    def attempt():
        with app.app_context():
            actor = db.session.get(User, member_id)
            barrier.wait(timeout=30)
            try:
                build.build_board(board_id, 3, actor=actor)
                outcome = "ok"
            except Exception as exc:
                outcome = exc
            db.session.remove()
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=attempt) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert len(outcomes) == workers
    failures = [o for o in outcomes if o != "ok"]
    assert all(isinstance(f, (InsufficientStock, ConcurrentConflict)) for f in failures), failures
    successes = workers - len(failures)
    assert 1 <= successes <= 3

    with app.app_context():
        assert db.session.execute(db.select(Part.quantity).filter_by(part_id="PART-A")).scalar_one() == 10 - 3 * successes
        assert Transaction.query.count() == successes
        assert BoardBuild.query.count() == successes
        db.session.remove()
        db.engine.dispose()
