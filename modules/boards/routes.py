"""HTTP routes for boards: BOM upload, readiness, builds."""

from dataclasses import asdict

from flask import current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy import func

from errors import BoardNotFound, InvalidInput
from extensions import db
from modules.boards import bom
from modules.boards.build import build_board, check_feasibility, run_with_retries
from modules.boards.models import (
    Board,
    BoardBuild,
    create_board,
    deactivate_board,
    delete_board,
    match_existing_parts,
)
from permissions import can_manage_boards, require_role
from utils import allowed_file, parse_bool, parse_int, request_data

from . import bp


def _get_board(board_id: int) -> Board:
    board = db.session.get(Board, board_id)
    if board is None or (not board.is_active and not can_manage_boards()):
        raise BoardNotFound(f"Board {board_id} not found")
    return board


def _uploaded_rows():
    upload = request.files.get('bom')
    if upload is None or not upload.filename:
        return None
    if not allowed_file(upload.filename):
        raise InvalidInput("BOM must be a .csv or .xlsx file")
    return bom.parse_bom(upload.stream, upload.filename)


# ---------- Listing ----------
@bp.route('/')
@login_required
def list_boards():
    query = Board.query
    if not (can_manage_boards() and parse_bool(request.args.get('include_inactive'))):
        query = query.filter(Board.is_active.is_(True))
    keyword = (request.args.get('q') or '').strip()
    if keyword:
        query = query.filter(Board.name.ilike(f"%{keyword}%"))
    boards = query.order_by(Board.created_at.desc(), Board.id.desc()).all()

    counts = dict(
        db.session.query(BoardBuild.board_id, func.count(BoardBuild.id))
        .group_by(BoardBuild.board_id)
        .all()
    )
    rows = []
    for b in boards:
        data = b.to_dict()
        data["parts_count"] = len(b.board_parts)
        data["build_count"] = counts.get(b.id, 0)
        rows.append(data)
    return jsonify(ok=True, count=len(rows), boards=rows)


@bp.route('/<int:board_id>')
@login_required
def board_detail(board_id: int):
    board = _get_board(board_id)
    quantity = parse_int(request.args.get('quantity'), 'quantity', minimum=1, default=1)
    shortfalls = check_feasibility(board, quantity) if board.board_parts else []
    return jsonify(
        ok=True,
        board=board.to_dict(with_parts=True),
        quantity=quantity,
        feasible=bool(board.board_parts) and not shortfalls,
        shortfalls=[asdict(s) for s in shortfalls],
    )


@bp.route('/builds')
@login_required
def build_history():
    query = BoardBuild.query
    board_id = request.args.get('board_id')
    if board_id:
        query = query.filter(BoardBuild.board_id == parse_int(board_id, 'board_id'))
    limit = min(parse_int(request.args.get('limit'), 'limit', minimum=1, default=50), 500)
    builds = query.order_by(BoardBuild.built_at.desc(), BoardBuild.id.desc()).limit(limit).all()
    return jsonify(ok=True, count=len(builds), builds=[b.to_dict() for b in builds])


# ---------- BOM upload ----------
@bp.route('/preview', methods=['POST'])
@login_required
@require_role('admin')
def preview_bom():
    """Parse an uploaded BOM and pre-match it against inventory without saving anything."""
    rows = _uploaded_rows()
    if rows is None:
        raise InvalidInput("Upload a BOM file in the 'bom' field")
    rows = match_existing_parts(rows)
    return jsonify(ok=True, count=len(rows), rows=[asdict(r) for r in rows])


@bp.route('/new', methods=['POST'])
@login_required
@require_role('admin')
def new_board():
    rows = _uploaded_rows()
    data = request_data()
    if rows is None:
        records = data.get('rows') if isinstance(data, dict) else None
        if not isinstance(records, list):
            raise InvalidInput("Provide a BOM file or a list of rows")
        rows = bom.rows_from_records(records)
    elif parse_bool(data.get('auto_match')):
        rows = match_existing_parts(rows)

    board = create_board(
        name=data.get('name'),
        version=data.get('version'),
        description=data.get('description'),
        rows=rows,
        actor=current_user,
        output_part_id=data.get('output_part_id') or None,
        default_min_quantity=current_app.config['LOW_STOCK_DEFAULT_MIN'],
    )
    return jsonify(ok=True, board=board.to_dict(with_parts=True)), 201


# ---------- Build ----------
@bp.route('/<int:board_id>/build', methods=['POST'])
@login_required
def build(board_id: int):
    data = request_data()
    quantity = parse_int(data.get('quantity'), 'quantity', minimum=1, default=1)
    notes = (data.get('notes') or '').strip() or f"Built via dashboard by {current_user.name}"
    cfg = current_app.config

    result = run_with_retries(
        lambda: build_board(
            board_id,
            quantity,
            actor=current_user,
            notes=notes,
            isolation_level=cfg['BUILD_ISOLATION_LEVEL'],
            timeout=cfg['BUILD_TIMEOUT_SECONDS'],
        ),
        attempts=cfg['BUILD_MAX_RETRIES'],
        backoff=cfg['BUILD_RETRY_BACKOFF'],
    )
    return jsonify(ok=True, **result.to_dict()), 201


# ---------- Admin ----------
@bp.route('/<int:board_id>/deactivate', methods=['POST'])
@login_required
@require_role('admin')
def deactivate(board_id: int):
    board = _get_board(board_id)
    deactivate_board(board, current_user)
    return jsonify(ok=True, board=board.to_dict())


@bp.route('/<int:board_id>/delete', methods=['POST'])
@login_required
@require_role('admin')
def delete(board_id: int):
    board = _get_board(board_id)
    delete_board(board, current_user)
    return jsonify(ok=True, deleted=board_id)
