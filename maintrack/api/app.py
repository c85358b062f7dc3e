"""
Flask App Factory
"""
# ========================================================
# IMPORTS
# ========================================================
from flask import Flask, jsonify

# --------------------------------------------------------
# Local Imports
# --------------------------------------------------------
from maintrack.config import APP_NAME, __version__
from maintrack.controller.app_controller import AppController
from maintrack.errors import StoreBusyError, ValidationError


# ========================================================
# FUNCTIONS
# ========================================================
def create_app(controller: AppController) -> Flask:
    app = Flask(__name__)
    app.json.ensure_ascii = False
    app.config["CONTROLLER"] = controller

    @app.errorhandler(ValidationError)
    def validation_failed(e):
        return jsonify(error=str(e)), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify(error=e.description), 404

    @app.errorhandler(StoreBusyError)
    def store_busy(e):
        return jsonify(error=str(e)), 503

    @app.get("/api/health")
    def health():
        return jsonify(app=APP_NAME, version=__version__)

    # Register routes
    from maintrack.api.routes import register_routes
    register_routes(app, controller)

    return app
