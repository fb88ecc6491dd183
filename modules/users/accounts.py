"""Account operations: creation, password check, role changes."""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from errors import InvalidInput, PermissionDenied
from extensions import db
from models import ROLES, User

logger = logging.getLogger(__name__)


def create_user(name: str, email: str, password: str, role: str = "member") -> User:
    name = (name or "").strip()
    email = (email or "").strip().lower()
    if not name or not email or not password:
        raise InvalidInput("name, email and password are required")
    if role not in ROLES:
        raise InvalidInput(f"role must be one of {', '.join(ROLES)}")
    if User.query.filter_by(email=email).first():
        raise InvalidInput(f"User {email} already exists")

    user = User(name=name, email=email, password=generate_password_hash(password), role=role)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise InvalidInput(f"User {email} already exists") from None
    logger.info(f"Created user {email} ({role})")
    return user


def authenticate(email: str, password: str) -> Optional[User]:
    user = User.query.filter_by(email=(email or "").strip().lower()).first()
    if user and check_password_hash(user.password, password or ""):
        return user
    return None


def change_role(actor, target: User, new_role: str, confirm_name: Optional[str] = None) -> User:
    """
    Change ``target``'s role on behalf of ``actor``.

    - only admins change roles
    - an admin never demotes another admin
    - an admin may step down only while another admin remains
    """
    if actor is None or getattr(actor, "role", None) != "admin":
        raise PermissionDenied("Only admins can change roles")
    if new_role not in ROLES:
        raise InvalidInput(f"role must be one of {', '.join(ROLES)}")
    if confirm_name is not None and confirm_name != target.name:
        raise InvalidInput("The name you entered does not match")
    if target.role == new_role:
        return target

    if target.role == "admin" and new_role != "admin":
        if target.id != actor.id:
            raise PermissionDenied("You cannot demote other administrators")
        if User.query.filter(User.role == "admin", User.id != target.id).count() == 0:
            raise InvalidInput("At least one administrator must remain")

    old_role = target.role
    target.role = new_role
    db.session.commit()
    logger.info(f"User {target.email}: {old_role} -> {new_role} (by user {actor.id})")
    return target
