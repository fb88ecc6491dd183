"""HTTP routes for the parts catalog and stock operations."""

import io
from datetime import datetime

from flask import current_app, jsonify, request, send_file
from flask_login import current_user, login_required
from openpyxl import Workbook
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from errors import InvalidInput
from extensions import db
from modules.inventory import ledger
from modules.inventory.models import TRANSACTION_TYPES, Part, Transaction
from permissions import can_view_sensitive, require_role
from utils import parse_bool, parse_int, request_data

from . import bp

EDITABLE_FIELDS = ["description", "value", "footprint", "bin_id", "location_within_bin", "part_link", "qr_code"]


def _visible_parts():
    query = Part.query
    if not can_view_sensitive():
        query = query.filter(Part.is_sensitive.is_(False))
    return query


def _lookup(part_code: str) -> Part:
    return ledger.get_part(part_code, include_sensitive=can_view_sensitive())


# ---------- Catalog ----------
@bp.route('/')
@login_required
def index():
    query = _visible_parts()
    keyword = (request.args.get('q') or '').strip()
    if keyword:
        like = f"%{keyword}%"
        query = query.filter(or_(
            Part.part_id.ilike(like),
            Part.description.ilike(like),
            Part.bin_id.ilike(like),
            Part.value.ilike(like),
            Part.footprint.ilike(like),
        ))
    if parse_bool(request.args.get('low_stock')):
        query = query.filter(Part.quantity <= Part.min_quantity)
    parts = query.order_by(Part.part_id.asc()).all()
    return jsonify(ok=True, count=len(parts), parts=[p.to_dict() for p in parts])


@bp.route('/part/<string:part_id>')
@login_required
def view_part(part_id):
    part = _lookup(part_id)
    recent = (Transaction.query
              .filter_by(part_id=part.id)
              .order_by(Transaction.timestamp.desc(), Transaction.id.desc())
              .limit(20)
              .all())
    return jsonify(ok=True, part=part.to_dict(), transactions=[t.to_dict() for t in recent])


@bp.route('/low-stock')
@login_required
def low_stock():
    parts = (_visible_parts()
             .filter(Part.quantity <= Part.min_quantity)
             .order_by((Part.quantity - Part.min_quantity).asc())
             .all())
    return jsonify(ok=True, count=len(parts), parts=[p.to_dict() for p in parts])


@bp.route('/add', methods=['POST'])
@login_required
@require_role('admin')
def add_part():
    data = request_data()
    code = (data.get('part_id') or '').strip()
    description = (data.get('description') or '').strip()
    if not code or not description:
        raise InvalidInput("part_id and description are required")
    quantity = parse_int(data.get('quantity'), 'quantity', minimum=0, default=0)
    min_quantity = parse_int(data.get('min_quantity'), 'min_quantity', minimum=0,
                             default=current_app.config['LOW_STOCK_DEFAULT_MIN'])

    if Part.query.filter_by(part_id=code).first():
        raise InvalidInput(f"Part {code} already exists")

    part = Part(
        part_id=code,
        description=description,
        value=data.get('value') or None,
        footprint=data.get('footprint') or None,
        bin_id=data.get('bin_id') or None,
        location_within_bin=data.get('location_within_bin') or None,
        quantity=0,
        min_quantity=min_quantity,
        part_link=data.get('part_link') or None,
        qr_code=data.get('qr_code') or f"QR-{code}",
        is_sensitive=parse_bool(data.get('is_sensitive')),
    )
    db.session.add(part)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise InvalidInput(f"Part {code} already exists") from None

    # opening stock goes through the ledger like any other change
    if quantity:
        ledger.restock(part, quantity, current_user, "Initial stock")

    return jsonify(ok=True, part=part.to_dict()), 201


@bp.route('/edit/<string:part_id>', methods=['POST'])
@login_required
@require_role('admin')
def edit_part(part_id):
    part = ledger.get_part(part_id)
    data = request_data()

    for name in EDITABLE_FIELDS:
        if name in data:
            setattr(part, name, (data.get(name) or '').strip() or None)
    if 'description' in data and not part.description:
        raise InvalidInput("description cannot be empty")
    if 'min_quantity' in data:
        part.min_quantity = parse_int(data.get('min_quantity'), 'min_quantity', minimum=0)
    if 'is_sensitive' in data:
        part.is_sensitive = parse_bool(data.get('is_sensitive'))
    if 'quantity' in data:
        raise InvalidInput("quantity changes go through restock, checkout or adjust")

    db.session.commit()
    return jsonify(ok=True, part=part.to_dict())


@bp.route('/delete/<string:part_id>', methods=['POST'])
@login_required
@require_role('admin')
def delete_part(part_id):
    from modules.boards.models import BoardPart

    part = ledger.get_part(part_id)
    if BoardPart.query.filter_by(part_id=part.id).first() is not None:
        raise InvalidInput(f"{part.part_id} is used by a board BOM and cannot be deleted")
    if Transaction.query.filter_by(part_id=part.id).first() is not None:
        raise InvalidInput(f"{part.part_id} has transaction history and cannot be deleted")

    db.session.delete(part)
    db.session.commit()
    return jsonify(ok=True, deleted=part_id)


# ---------- Stock operations ----------
@bp.route('/restock', methods=['POST'])
@login_required
@require_role('admin')
def restock():
    data = request_data()
    part = _lookup(data.get('part_id'))
    ledger.restock(part, parse_int(data.get('quantity'), 'quantity', minimum=1), current_user, data.get('notes'))
    return jsonify(ok=True, part=part.to_dict())


@bp.route('/adjust', methods=['POST'])
@login_required
@require_role('admin')
def adjust():
    data = request_data()
    part = _lookup(data.get('part_id'))
    ledger.adjust(part, parse_int(data.get('delta'), 'delta'), current_user, data.get('notes'))
    return jsonify(ok=True, part=part.to_dict())


@bp.route('/checkout', methods=['GET'])
@login_required
def checkout_lookup():
    """What the checkout form shows for a part (QR codes land here)."""
    code = (request.args.get('part') or '').strip()
    if not code:
        raise InvalidInput("part is required")
    part = _lookup(code)
    return jsonify(
        ok=True,
        part=part.to_dict(),
        available=part.quantity,
        checked_out=ledger.checked_out_quantity(current_user, part),
    )


@bp.route('/checkout', methods=['POST'])
@login_required
def checkout():
    data = request_data()
    part = _lookup(data.get('part_id'))
    quantity = parse_int(data.get('quantity'), 'quantity', minimum=1)
    action = (data.get('action') or 'take').strip().lower()

    if action == 'take':
        ledger.checkout(part, quantity, current_user, data.get('notes'))
    elif action == 'consume':
        ledger.consume(part, quantity, current_user, data.get('notes'))
    else:
        raise InvalidInput("action must be 'take' or 'consume'")
    return jsonify(ok=True, part=part.to_dict())


@bp.route('/return', methods=['POST'])
@login_required
def return_parts():
    data = request_data()
    part = _lookup(data.get('part_id'))
    ledger.return_parts(part, parse_int(data.get('quantity'), 'quantity', minimum=1),
                        current_user, data.get('notes'))
    return jsonify(ok=True, part=part.to_dict())


# ---------- Derived views ----------
@bp.route('/my-items')
@login_required
def my_items():
    items = ledger.outstanding_items(user_id=current_user.id)
    return jsonify(ok=True, count=len(items), items=items)


@bp.route('/outstanding')
@login_required
@require_role('admin')
def outstanding():
    items = ledger.outstanding_items()
    keyword = (request.args.get('q') or '').strip().lower()
    if keyword:
        items = [i for i in items if any(
            keyword in (i[k] or '').lower() for k in ('part_id', 'description', 'user_name', 'user_email')
        )]
    return jsonify(ok=True, count=len(items), items=items)


@bp.route('/transactions')
@login_required
def transactions():
    query = Transaction.query.join(Part)
    if not can_view_sensitive():
        query = query.filter(Part.is_sensitive.is_(False))
    kind = request.args.get('type')
    if kind:
        if kind not in TRANSACTION_TYPES:
            raise InvalidInput(f"type must be one of {', '.join(TRANSACTION_TYPES)}")
        query = query.filter(Transaction.type == kind)
    limit = min(parse_int(request.args.get('limit'), 'limit', minimum=1, default=100), 500)
    rows = query.order_by(Transaction.timestamp.desc(), Transaction.id.desc()).limit(limit).all()
    return jsonify(ok=True, count=len(rows), transactions=[t.to_dict() for t in rows])


# ---------- Export ----------
@bp.route('/export')
@login_required
@require_role('admin')
def export():
    wb = Workbook()
    ws = wb.active
    ws.title = "Inventory"
    header = ["Part ID", "Description", "Value", "Footprint", "Bin", "Location",
              "Quantity", "Min Quantity", "Sensitive", "Link"]
    ws.append(header)
    for p in Part.query.order_by(Part.part_id.asc()).all():
        ws.append([
            p.part_id, p.description, p.value or "", p.footprint or "",
            p.bin_id or "", p.location_within_bin or "",
            p.quantity, p.min_quantity, "yes" if p.is_sensitive else "no", p.part_link or "",
        ])

    out = io.BytesIO()
    wb.save(out)
    out.seek(0)
    return send_file(
        out,
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        as_attachment=True,
        download_name=f"inventory_{datetime.utcnow():%Y%m%d_%H%M%S}.xlsx",
    )
