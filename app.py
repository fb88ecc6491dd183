import logging

from flask import Flask, jsonify
from dotenv import load_dotenv

load_dotenv()

from config import Config  # noqa: E402  (load_dotenv needs to run first)
from errors import InventoryError  # noqa: E402
from extensions import db, login_manager  # noqa: E402  (load_dotenv needs to run first)


def create_app(test_config: dict | None = None) -> Flask:
    """Application factory for the lab inventory dashboard."""

    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # SQLite waits this long on a locked database before giving up
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        engine_options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
        connect_args = dict(engine_options.get("connect_args") or {})
        connect_args.setdefault("timeout", app.config["BUILD_TIMEOUT_SECONDS"])
        engine_options["connect_args"] = connect_args
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    # init extensions
    db.init_app(app)
    login_manager.init_app(app)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify(ok=False, error_kind="Unauthorized", message="Login required"), 401

    # blueprints
    from modules.inventory import bp as inventory_bp
    from modules.boards import bp as boards_bp
    from modules.users import bp as users_bp
    from modules.labels import bp as labels_bp

    app.register_blueprint(inventory_bp)
    app.register_blueprint(boards_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(labels_bp)

    from ui_routes import ui
    app.register_blueprint(ui)  # dashboard "/"

    # errors
    @app.errorhandler(InventoryError)
    def handle_inventory_error(err: InventoryError):
        db.session.rollback()
        return jsonify(ok=False, **err.to_dict()), err.status_code

    @app.errorhandler(403)
    def forbidden(_err):
        return jsonify(ok=False, error_kind="PermissionDenied", message="Forbidden"), 403

    @app.errorhandler(404)
    def not_found(_err):
        return jsonify(ok=False, error_kind="NotFound", message="Not found"), 404

    # DB
    with app.app_context():
        # models must be imported before create_all()
        import models  # noqa: F401
        from modules.inventory import models as inventory_models  # noqa: F401
        from modules.boards import models as boards_models  # noqa: F401

        db.create_all()

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(debug=True)
