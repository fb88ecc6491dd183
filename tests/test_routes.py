from datetime import datetime, timedelta

import pytest

from extensions import db
from modules.boards.models import Board, BoardBuild, BoardPart
from modules.inventory.models import Part, Transaction


def _authenticate(client, user_id: int) -> None:
    with client.session_transaction() as session:
        session["_user_id"] = str(user_id)
        session["_fresh"] = True


@pytest.fixture()
def activity(app, admin_id, member_id):
    now = datetime.utcnow()
    with app.app_context():
        res = Part(part_id="RES-10K-001", description="10k", quantity=250, min_quantity=50)
        wire = Part(part_id="WIRE-22AWG-001", description="Wire", quantity=8, min_quantity=10)
        board = Board(name="ADCS", version="1.0")
        board.board_parts = [BoardPart(part=res, quantity_required=2)]
        db.session.add_all([board, wire])
        db.session.flush()
        db.session.add_all([
            Transaction(part_id=res.id, user_id=admin_id, type="restock", quantity=10,
                        timestamp=now - timedelta(days=10)),
            Transaction(part_id=res.id, user_id=member_id, type="checkout", quantity=-2,
                        timestamp=now - timedelta(hours=2)),
            Transaction(part_id=wire.id, user_id=member_id, type="consumption", quantity=-1,
                        timestamp=now - timedelta(hours=1)),
            BoardBuild(board_id=board.id, built_by=member_id, quantity_built=1,
                       built_at=now - timedelta(minutes=5)),
        ])
        db.session.commit()


def test_index_requires_login(client):
    resp = client.get("/")
    assert resp.status_code == 401


def test_dashboard_stats(client, activity, admin_id):
    _authenticate(client, admin_id)

    body = client.get("/").get_json()

    stats = body["stats"]
    assert stats["total_parts"] == 2
    assert stats["low_stock_items"] == 1
    assert stats["total_users"] == 2
    assert (stats["total_boards"], stats["ready_boards"], stats["total_builds"]) == (1, 1, 1)
    assert stats["transactions_this_week"] == 2
    # one the week before, two this week
    assert stats["transaction_growth"] == 100

    kinds = [item["type"] for item in body["recent_activity"]]
    assert kinds == ["build", "consumption", "checkout", "restock"]


def test_member_dashboard_hides_sensitive_parts(client, app, activity, admin_id, member_id):
    with app.app_context():
        chip = Part(part_id="CRYPTO-CHIP-001", description="HSM", quantity=3, min_quantity=5,
                    is_sensitive=True)
        db.session.add(chip)
        db.session.flush()
        db.session.add(Transaction(part_id=chip.id, user_id=admin_id, type="restock", quantity=3))
        db.session.commit()

    _authenticate(client, member_id)
    body = client.get("/").get_json()

    assert all(item.get("part") != "CRYPTO-CHIP-001" for item in body["recent_activity"])
    stats = body["stats"]
    assert (stats["total_parts"], stats["low_stock_items"], stats["new_parts_this_week"]) == (2, 1, 2)
    assert stats["transactions_this_week"] == 2

    _authenticate(client, admin_id)
    body = client.get("/").get_json()
    assert body["recent_activity"][0]["part"] == "CRYPTO-CHIP-001"
    assert (body["stats"]["total_parts"], body["stats"]["low_stock_items"]) == (3, 2)
    assert body["stats"]["transactions_this_week"] == 3


def test_member_dashboard_hides_user_counts(client, activity, member_id):
    _authenticate(client, member_id)
    stats = client.get("/").get_json()["stats"]
    assert stats["total_users"] == 0
    assert stats["new_users_this_week"] == 0
