import os
from flask import Flask
from flask_cors import CORS
from flask_session import Session
from pax_bridge.routes.pax import pax_bp
from pax_bridge.routes.pax_config import PaxUtils

LOG_FILE_PATH = os.path.join(PaxUtils.get_executable_dir(), "logs", "pax_bridge.log")


def get_resource_path(relative_path):
    """Get absolute path to a resource under the project root"""
    return os.path.join(PaxUtils.get_executable_dir(), relative_path)


def create_app(test_config=None):
    app = Flask(__name__)

    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "change-me-pax-bridge")
    app.config["SESSION_TYPE"] = "filesystem"
    app.config["SESSION_PERMANENT"] = False
    app.config["SESSION_FILE_DIR"] = os.environ.get(
        "PAX_SESSION_DIR", get_resource_path("flask_session")
    )
    if test_config:
        app.config.update(test_config)

    Session(app)

    CORS(app, origins=os.environ.get("CORS_ALLOW_ORIGINS", "*").split(","), supports_credentials=True)
    app.register_blueprint(pax_bp, url_prefix="/api")

    return app


if __name__ == "__main__":
    PaxUtils.setup_logging(LOG_FILE_PATH)
    app = create_app()
    app.run(host="0.0.0.0", port=int(os.environ.get("PAX_BRIDGE_PORT", 5001)), debug=False)
