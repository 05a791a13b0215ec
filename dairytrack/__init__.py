from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
import logging
import os

# Shared database handle, bound to the app inside create_app().
db = SQLAlchemy()


def _default_database_uri():
    """Builds a SQLite path inside a per-user, writable data folder."""
    app_data_path = os.environ.get('APPDATA') or os.path.expanduser("~")
    data_folder = os.path.join(app_data_path, 'DairyTrack')
    os.makedirs(data_folder, exist_ok=True)
    return f"sqlite:///{os.path.join(data_folder, 'database.db')}"


def create_app(test_config=None):
    """Application factory function."""
    app = Flask(__name__, instance_relative_config=False)
    CORS(app, resources={r"/api/*": {"origins": "*"}})

    app.config.from_mapping(
        SECRET_KEY=os.environ.get('DAIRYTRACK_SECRET_KEY', 'dev'),
        SQLALCHEMY_DATABASE_URI=os.environ.get('DAIRYTRACK_DATABASE_URL'),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        LOG_LEVEL=os.environ.get('DAIRYTRACK_LOG_LEVEL', 'INFO'),
        DEFAULT_GESTATION_DAYS=280,
        PENDING_BREEDING_WINDOW_DAYS=90,
        DUE_SOON_DAYS=7,
        MAX_FEED_RECOMMENDATIONS=5,
    )
    if test_config:
        app.config.from_mapping(test_config)

    # Only touch the filesystem when nothing else was configured.
    if not app.config.get('SQLALCHEMY_DATABASE_URI'):
        app.config['SQLALCHEMY_DATABASE_URI'] = _default_database_uri()

    app.logger.setLevel(getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO))

    db.init_app(app)

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        """Renders aborts and get_or_404 misses as JSON instead of HTML."""
        return jsonify({'error': error.description}), error.code

    with app.app_context():
        from .routes import api
        app.register_blueprint(api, url_prefix='/api')

        # Create database tables for our models
        db.create_all()

    return app
