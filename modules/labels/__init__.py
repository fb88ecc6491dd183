"""QR code labels for parts."""

from flask import Blueprint

bp = Blueprint("labels", __name__, url_prefix="/labels")

from . import routes  # noqa: E402  pylint: disable=wrong-import-position

__all__ = ["bp", "routes"]
