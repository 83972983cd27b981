import logging

import flask
import markupsafe
from flask import Flask, jsonify

# Patch para compatibilidade do Flasgger com Flask 3.0+
flask.Markup = markupsafe.Markup

from flasgger import Swagger  # noqa: E402

from nodeagent.config import DevelopmentConfig  # noqa: E402
from nodeagent.errors import NodeAgentError  # noqa: E402
from nodeagent.extensions import cors, hyperv_client, cluster_client  # noqa: E402
from nodeagent.api.main import main_bp  # noqa: E402


def create_app(config_class=DevelopmentConfig):
    """Factory do aplicativo Flask"""
    app = Flask(__name__)
    app.config.from_object(config_class)

    swagger_config = {
        "headers": [],
        "specs": [
            {
                "endpoint": 'apispec',
                "route": '/apispec.json',
                "rule_filter": lambda rule: True,
                "model_filter": lambda tag: True,
            }
        ],
        "static_url_path": "/flasgger_static",
        "swagger_ui": True,
        "specs_route": "/docs"
    }
    Swagger(app, config=swagger_config)

    init_extensions(app)
    configure_logging(app)
    register_blueprints(app)
    app.register_blueprint(main_bp)
    register_error_handlers(app)

    return app


def init_extensions(app):
    """Inicializa as extensões e injeta a config nos singletons."""
    cors.init_app(app, resources={r"/*": {
        "origins": app.config.get('CORS_ORIGINS', []),
        "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        "allow_headers": ["Content-Type", "Authorization"],
    }})

    hyperv_client.init_app(app)
    cluster_client.init_app(app)


def configure_logging(app):
    if not app.debug:
        logging.basicConfig(level=logging.INFO)


def register_blueprints(app):
    prefix = app.config.get('API_PREFIX', '/api')

    from nodeagent.hyperv import bp as hyperv_bp
    app.register_blueprint(hyperv_bp, url_prefix=f"{prefix}/hyperv")

    from nodeagent.cluster import bp as cluster_bp
    app.register_blueprint(cluster_bp, url_prefix=f"{prefix}/cluster")


def register_error_handlers(app):
    """Centraliza o tratamento de exceções da aplicação."""

    @app.errorhandler(NodeAgentError)
    def handle_agent_error(e):
        if e.status_code >= 500:
            app.logger.error(f"{type(e).__name__}: {e.message}")
        else:
            app.logger.warning(f"{type(e).__name__}: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(400)
    def handle_bad_request(e):
        return jsonify({'success': False, 'error': e.description}), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'error': 'Endpoint not found'}), 404

    @app.errorhandler(500)
    def handle_generic_error(e):
        app.logger.error(f"Internal Server Error: {str(e)}")
        return jsonify({'success': False, 'error': str(e)}), 500
