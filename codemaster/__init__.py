import logging
import os

from flask import Flask, jsonify
from flask_login import LoginManager
from flask_wtf import CSRFProtect
from werkzeug.exceptions import HTTPException

from config import Config
from .models import db, User
from .recommendations import RecommendationClient

login_manager = LoginManager()
csrf = CSRFProtect()


def create_app(config_class=Config, overrides=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # ensure instance folder exists
    os.makedirs(app.instance_path, exist_ok=True)

    # initialize extensions
    db.init_app(app)
    login_manager.init_app(app)
    csrf.init_app(app)

    app.extensions["recommendation_client"] = RecommendationClient(
        app.config["RECOMMENDATION_API_URL"],
        timeout=app.config["RECOMMENDATION_TIMEOUT"],
        max_retries=app.config["RECOMMENDATION_MAX_RETRIES"],
        retry_delay=app.config["RECOMMENDATION_RETRY_DELAY"],
        log=logging.getLogger("codemaster.recommendations"),
    )

    from .auth.routes import auth_bp
    from .main.routes import main_bp
    from .admin.routes import admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(main_bp)
    app.register_blueprint(admin_bp)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"success": False, "error": "Authentication required"}), 401

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"success": False, "error": e.description}), e.code

    from .seed import register_cli
    register_cli(app)

    with app.app_context():
        db.create_all()

    return app
