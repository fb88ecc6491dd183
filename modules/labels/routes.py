"""HTTP routes for part QR labels."""

import io

from flask import current_app, request, send_file
from flask_login import login_required

from errors import InvalidInput
from modules.inventory.ledger import get_part
from modules.inventory.models import Part
from permissions import can_view_sensitive, require_role
from utils import parse_int

from . import bp
from .qr import LabelPart, bulk_qr_pdf, qr_png


@bp.route('/<string:part_id>.png')
@login_required
def label_png(part_id: str):
    part = get_part(part_id, include_sensitive=can_view_sensitive())
    cfg = current_app.config
    data = qr_png(part.part_id, cfg['QR_BASE_URL'], cfg['QR_BOX_SIZE'], cfg['QR_BORDER'])
    return send_file(io.BytesIO(data), mimetype="image/png", download_name=f"{part.part_id}.png")


@bp.route('/bulk.pdf')
@login_required
@require_role('admin')
def bulk_pdf():
    """Label sheet for ``?part=A&part=B``; every part when none are given."""
    codes = [c.strip() for c in request.args.getlist('part') if c.strip()]
    columns = parse_int(request.args.get('columns'), 'columns', minimum=1, default=3)

    query = Part.query
    if codes:
        query = query.filter(Part.part_id.in_(codes))
    parts = query.order_by(Part.part_id.asc()).all()
    if codes and len(parts) != len(set(codes)):
        found = {p.part_id for p in parts}
        raise InvalidInput(f"Unknown parts: {', '.join(sorted(set(codes) - found))}")

    pdf = bulk_qr_pdf(
        [LabelPart(p.part_id, p.description) for p in parts],
        current_app.config['QR_BASE_URL'],
        columns=columns,
    )
    return send_file(io.BytesIO(pdf), mimetype="application/pdf", as_attachment=True,
                     download_name="parts-qr-codes.pdf")
