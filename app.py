"""
SignageCore - Multi-tenant digital signage backend
Main Flask application entry point
"""
import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from config import config
from extensions import limiter, socketio
from models import db
from utils.errors import SignageError


def create_app(config_name=None):
    """Application factory pattern"""

    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])
    config[config_name].init_app(app)

    # Initialize extensions
    db.init_app(app)

    # CORS configuration
    CORS(app, resources={
        r"/api/*": {
            "origins": app.config['CORS_ORIGINS'],
            "methods": ["GET", "POST", "PUT", "DELETE"],
            "allow_headers": ["Content-Type", "X-Device-ID", "X-Device-Key",
                              "X-Tenant-ID", "X-User-ID", "X-User-Role"]
        }
    })

    # Rate limiting (RATELIMIT_* keys are read from app.config)
    limiter.init_app(app)

    # SocketIO initialization
    cors_origins = app.config['CORS_ORIGINS']
    if cors_origins == ['*']:
        cors_origins = '*'
    socketio.init_app(app,
                      cors_allowed_origins=cors_origins,
                      async_mode='threading',
                      logger=app.config['DEBUG'],
                      engineio_logger=app.config['DEBUG'])

    # Setup logging
    setup_logging(app)

    # Register blueprints
    from routes.api_routes import api_bp
    from routes.admin_routes import admin_bp

    app.register_blueprint(api_bp, url_prefix='/api')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')

    # Import SocketIO event handlers
    import socketio_events  # noqa: F401

    # Error handlers
    @app.errorhandler(SignageError)
    def signage_error(error):
        db.session.rollback()
        if error.status_code >= 500:
            app.logger.error(f'{error.code}: {error.message}')
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found', 'code': 'not_found'}), 404

    @app.errorhandler(429)
    def rate_limited(error):
        return jsonify({'error': 'Too many requests', 'code': 'rate_limited'}), 429

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return jsonify({'error': 'Internal server error', 'code': 'error'}), 500

    @app.errorhandler(Exception)
    def unhandled_error(error):
        if isinstance(error, HTTPException):
            return jsonify({'error': error.description, 'code': error.name.lower().replace(' ', '_')}), error.code
        db.session.rollback()
        app.logger.exception(f'Unhandled error: {error}')
        return jsonify({'error': 'Internal server error', 'code': 'error'}), 500

    # Background jobs
    from utils.scheduler import init_scheduler, shutdown_scheduler
    init_scheduler(app)

    # Register shutdown handler
    import atexit
    atexit.register(shutdown_scheduler)

    return app


def setup_logging(app):
    """Configure application and API request logging"""

    if not app.debug and not app.testing:
        # Create logs directory if it doesn't exist
        if not os.path.exists(app.config['LOG_FOLDER']):
            os.mkdir(app.config['LOG_FOLDER'])

        formatter = logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        )

        # Application log handler
        file_handler = RotatingFileHandler(
            app.config['APP_LOG_FILE'],
            maxBytes=10240000,  # 10MB
            backupCount=10
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)
        app.logger.setLevel(logging.INFO)

        # Device API request log
        api_handler = RotatingFileHandler(
            app.config['API_LOG_FILE'],
            maxBytes=10240000,
            backupCount=10
        )
        api_handler.setFormatter(logging.Formatter('%(asctime)s %(message)s'))
        api_logger = logging.getLogger('api')
        api_logger.addHandler(api_handler)
        api_logger.setLevel(logging.INFO)

        app.logger.info('SignageCore startup')


if __name__ == '__main__':
    app = create_app()

    # Create database tables if they don't exist
    with app.app_context():
        db.create_all()

    # Run the application with SocketIO
    socketio.run(
        app,
        host=app.config['FLASK_HOST'],
        port=app.config['FLASK_PORT'],
        debug=app.config['DEBUG'],
        allow_unsafe_werkzeug=True
    )
