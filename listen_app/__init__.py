from flask import Flask, request, jsonify, g
from flask_sqlalchemy import SQLAlchemy
from flask_jwt_extended import JWTManager, verify_jwt_in_request, get_jwt_identity
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError
import atexit
import logging
import os

# Initialize extensions
db = SQLAlchemy()
jwt = JWTManager()

PUBLIC_ENDPOINTS = ('static', 'api.health', 'auth.register', 'auth.login')


def create_app(config_object='config.Config', coordinator_factory=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__, instance_relative_config=True)

    # Load configuration from config.py
    app.config.from_object(config_object)

    logging.basicConfig(level=app.config.get('LOG_LEVEL', 'INFO'))
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    # Configure JWT
    app.config["JWT_TOKEN_LOCATION"] = ["cookies"]
    app.config["JWT_COOKIE_CSRF_PROTECT"] = False # Keep it simple for this use case

    # Ensure the instance folder exists
    os.makedirs(app.instance_path, exist_ok=True)

    # Initialize extensions with the app
    db.init_app(app)
    jwt.init_app(app)

    @app.before_request
    def before_request_hook():
        # Registration, login, the health check and static files are reachable without a JWT
        if request.endpoint in PUBLIC_ENDPOINTS:
            return

        try:
            verify_jwt_in_request()
            user_id = int(get_jwt_identity())
        except (JWTExtendedException, PyJWTError, TypeError, ValueError):
            return jsonify({'error': 'Authentication required'}), 401

        from .models import User
        if db.session.get(User, user_id) is None:
            return jsonify({'error': 'Authentication required'}), 401
        g.user_id = user_id

    from .errors import ListenAppError

    @app.errorhandler(ListenAppError)
    def handle_app_error(error):
        return jsonify(error.to_dict()), error.status_code

    with app.app_context():
        # Import parts of our application
        from . import routes
        from . import auth
        from .models import User, ListeningSession, QuizAttempt  # noqa: F401 registers the tables
        from .quiz_generator import LLMQuizGenerator
        from .registry import CoordinatorRegistry, default_coordinator_factory

        # Create database tables for our models
        db.create_all()

        app.extensions['quiz_generator'] = LLMQuizGenerator.from_config(app.config)
        registry = CoordinatorRegistry((coordinator_factory or default_coordinator_factory)(app))
        app.extensions['listen_coordinators'] = registry
        atexit.register(registry.shutdown)

        # Register blueprints
        app.register_blueprint(routes.api_bp)
        app.register_blueprint(auth.auth_bp)

        return app
