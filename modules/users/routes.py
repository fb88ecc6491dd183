"""HTTP routes for sessions and user management."""

from flask import jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from sqlalchemy import or_

from errors import InvalidInput
from extensions import db, login_manager
from models import User
from modules.users.accounts import authenticate, change_role, create_user
from permissions import require_role
from utils import request_data

from . import bp


@login_manager.user_loader
def load_user(user_id: str | None) -> User | None:
    """Resolve a ``User`` instance for Flask-Login sessions."""

    if not user_id:
        return None
    return db.session.get(User, int(user_id))


@bp.route('/login', methods=['POST'])
def login():
    data = request_data()
    user = authenticate(data.get('email'), data.get('password'))
    if user is None:
        return jsonify(ok=False, error_kind="InvalidCredentials", message="Invalid email or password"), 401
    login_user(user)
    return jsonify(ok=True, user=user.to_dict())


@bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify(ok=True)


@bp.route('/me')
@login_required
def me():
    return jsonify(ok=True, user=current_user.to_dict())


@bp.route('/')
@login_required
@require_role('admin')
def list_users():
    query = User.query
    keyword = (request.args.get('q') or '').strip()
    if keyword:
        like = f"%{keyword}%"
        query = query.filter(or_(User.name.ilike(like), User.email.ilike(like)))
    users = query.order_by(User.created_at.desc(), User.id.desc()).all()
    return jsonify(ok=True, count=len(users), users=[u.to_dict() for u in users])


@bp.route('/add', methods=['POST'])
@login_required
@require_role('admin')
def add_user():
    data = request_data()
    user = create_user(data.get('name'), data.get('email'), data.get('password'), data.get('role') or 'member')
    return jsonify(ok=True, user=user.to_dict()), 201


@bp.route('/<int:user_id>/role', methods=['POST'])
@login_required
@require_role('admin')
def update_role(user_id: int):
    target = db.get_or_404(User, user_id)
    data = request_data()
    new_role = (data.get('role') or '').strip()
    if not new_role:
        raise InvalidInput("role is required")
    change_role(current_user, target, new_role, confirm_name=data.get('confirm_name'))
    return jsonify(ok=True, user=target.to_dict())
