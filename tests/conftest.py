# tests/conftest.py
import os
import sys
import pytest

# so that `from app import create_app` works when run from the repo root
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from werkzeug.security import generate_password_hash  # noqa: E402

from app import create_app  # noqa: E402
from extensions import db  # noqa: E402
from models import User  # noqa: E402
from modules.boards.models import Board, BoardPart  # noqa: E402
from modules.inventory.models import Part  # noqa: E402


@pytest.fixture()
def app():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "SECRET_KEY": "test-secret",
        "BUILD_RETRY_BACKOFF": 0,
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def ctx(app):
    """Application context for tests that call the service layer directly."""
    with app.app_context():
        yield


def _add_user(name: str, email: str, role: str) -> int:
    user = User(name=name, email=email, password=generate_password_hash("secret"), role=role)
    db.session.add(user)
    db.session.commit()
    return user.id


@pytest.fixture()
def admin_id(app) -> int:
    with app.app_context():
        return _add_user("Ada Admin", "admin@lab.test", "admin")


@pytest.fixture()
def member_id(app) -> int:
    with app.app_context():
        return _add_user("Max Member", "member@lab.test", "member")


@pytest.fixture()
def admin(ctx, admin_id):
    return db.session.get(User, admin_id)


@pytest.fixture()
def member(ctx, member_id):
    return db.session.get(User, member_id)


@pytest.fixture()
def make_part(ctx):
    def _make(code: str, quantity: int = 0, **fields) -> Part:
        fields.setdefault("description", f"{code} test part")
        fields.setdefault("min_quantity", 0)
        part = Part(part_id=code, quantity=quantity, **fields)
        db.session.add(part)
        db.session.commit()
        return part
    return _make


@pytest.fixture()
def make_board(ctx):
    def _make(name: str, lines, version: str = "1.0", is_active: bool = True) -> Board:
        board = Board(name=name, version=version, is_active=is_active)
        board.board_parts = [BoardPart(part=part, quantity_required=n) for part, n in lines]
        db.session.add(board)
        db.session.commit()
        return board
    return _make
