"""Board designs, BOMs and the build engine."""

from flask import Blueprint

bp = Blueprint("boards", __name__, url_prefix="/boards")

from . import models  # noqa: E402  pylint: disable=wrong-import-position
from . import routes  # noqa: E402  pylint: disable=wrong-import-position

__all__ = ["bp", "models", "routes"]
