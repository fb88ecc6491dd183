# ui_routes.py: dashboard summary and the QR landing route
from datetime import datetime, timedelta

from flask import Blueprint, jsonify, redirect, url_for
from flask_login import login_required

from extensions import db
from models import User
from modules.boards.models import Board, BoardBuild
from modules.inventory.models import Part, Transaction
from permissions import can_view_sensitive, is_admin

ui = Blueprint("ui", __name__)

RECENT_TRANSACTIONS = 5
RECENT_BUILDS = 3
RECENT_ACTIVITY = 5


# sensitive parts stay out of every figure a non-admin sees
def _visible_parts():
    query = Part.query
    if not can_view_sensitive():
        query = query.filter(Part.is_sensitive.is_(False))
    return query


def _visible_transactions():
    query = Transaction.query.join(Part)
    if not can_view_sensitive():
        query = query.filter(Part.is_sensitive.is_(False))
    return query


def _recent_activity():
    transactions = (_visible_transactions()
                    .order_by(Transaction.timestamp.desc(), Transaction.id.desc())
                    .limit(RECENT_TRANSACTIONS)
                    .all())
    builds = (BoardBuild.query
              .order_by(BoardBuild.built_at.desc(), BoardBuild.id.desc())
              .limit(RECENT_BUILDS)
              .all())

    items = [{
        "id": t.id,
        "type": t.type,
        "user": t.user.name if t.user else "Unknown",
        "part": t.part.part_id if t.part else None,
        "quantity": t.quantity,
        "timestamp": t.timestamp,
    } for t in transactions]
    items += [{
        "id": b.id,
        "type": "build",
        "user": b.builder.name if b.builder else "Unknown",
        "board": b.board.name if b.board else None,
        "quantity": b.quantity_built,
        "timestamp": b.built_at,
    } for b in builds]

    items.sort(key=lambda item: item["timestamp"], reverse=True)
    items = items[:RECENT_ACTIVITY]
    for item in items:
        item["timestamp"] = item["timestamp"].isoformat()
    return items


@ui.route("/")
@login_required
def home():
    now = datetime.utcnow()
    week_ago = now - timedelta(days=7)
    two_weeks_ago = now - timedelta(days=14)

    parts_count = _visible_parts().count()
    low_stock = _visible_parts().filter(Part.quantity <= Part.min_quantity).count()
    new_parts = _visible_parts().filter(Part.created_at >= week_ago).count()

    boards = Board.query.filter(Board.is_active.is_(True)).all()
    ready_boards = sum(1 for b in boards if b.can_build())
    builds_count = db.session.query(BoardBuild).count()

    this_week = _visible_transactions().filter(Transaction.timestamp >= week_ago).count()
    last_week = (_visible_transactions()
                 .filter(Transaction.timestamp >= two_weeks_ago, Transaction.timestamp < week_ago)
                 .count())
    growth = round((this_week - last_week) / last_week * 100) if last_week else 0

    # user counts are admin-only
    users_count = new_users = 0
    if is_admin():
        users_count = db.session.query(User).count()
        new_users = db.session.query(User).filter(User.created_at >= week_ago).count()

    activity = _recent_activity()
    stats = {
        "total_parts": parts_count,
        "low_stock_items": low_stock,
        "total_users": users_count,
        "recent_transactions": len(activity),
        "total_boards": len(boards),
        "ready_boards": ready_boards,
        "total_builds": builds_count,
        "new_parts_this_week": new_parts,
        "new_users_this_week": new_users,
        "transactions_this_week": this_week,
        "transaction_growth": growth,
    }
    return jsonify(ok=True, stats=stats, recent_activity=activity)


@ui.route("/qrcode/<string:part_id>")
def qrcode_landing(part_id: str):
    """Target of printed QR codes: hand over to the checkout lookup."""
    return redirect(url_for("inventory.checkout_lookup", part=part_id))
