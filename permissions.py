# permissions.py
# -*- coding: utf-8 -*-
"""
RBAC for the application.
- role_required([...]) is the main route decorator.
- require_role(*roles) is the positional shorthand for the same thing.
- can_* helpers answer capability questions for the current user.

Roles:
- member: browse the catalog, check out / return / consume parts, build boards
- admin: everything a member can do, plus restock, adjust, edit parts, manage boards and users
"""

from functools import wraps
from typing import Iterable, Set

from flask import abort
from flask_login import current_user, login_required


# ----------------------------- BASE DECORATOR ----------------------------- #
def role_required(allowed_roles: Iterable[str]):
    """
    Restrict a view to the given roles.
    Example:
        @role_required(["admin"])
        def view(): ...

    Rules:
    - anonymous → 401 (via login_manager.unauthorized)
    - authenticated without the role → 403
    """
    if isinstance(allowed_roles, str):
        allowed: Set[str] = {allowed_roles}
    else:
        allowed = set(allowed_roles or [])

    def decorator(view_func):
        @wraps(view_func)
        @login_required
        def wrapped(*args, **kwargs):
            role = getattr(current_user, "role", None)
            if role in allowed:
                return view_func(*args, **kwargs)
            abort(403)

        return wrapped
    return decorator


def require_role(*roles: str):
    """
    Shorthand, equivalent to role_required(list(roles)).
    Example:
        @require_role("admin")
    """
    return role_required(list(roles))


# --------------------------- HELPERS ------------------------ #
def _is(*roles: str) -> bool:
    """True if the current user is authenticated and holds one of ``roles``."""
    return bool(current_user.is_authenticated and getattr(current_user, "role", None) in roles)


# ---- Catalog ----
def can_view_sensitive(): return _is("admin")

# ---- Boards ----
def can_manage_boards():  return _is("admin")


def is_admin() -> bool:
    return _is("admin")
