import logging
import os
from logging.handlers import RotatingFileHandler

from flask import Flask
from flasgger import Swagger
from flask_sqlalchemy import SQLAlchemy

from config import Config

db = SQLAlchemy()

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(app):
    """Root logger at the configured level, plus an optional rotating file handler."""
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger('igcache').setLevel(level)

    log_file = app.config.get('LOG_FILE')
    if not log_file:
        return
    root = logging.getLogger()
    if any(isinstance(h, RotatingFileHandler) and h.baseFilename == os.path.abspath(log_file) for h in root.handlers):
        return
    try:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        # Rotate logs: 5 files, 5MB each
        file_handler = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=5, encoding='utf-8')
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler.setLevel(level)
        root.addHandler(file_handler)
        app.logger.info(f"--- File logging initialized to {log_file} ---")
    except OSError as e:
        app.logger.error(f"Failed to set up file logging to {log_file}: {e}", exc_info=True)


def create_app(config_class=Config):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)

    try:
        os.makedirs(app.instance_path, exist_ok=True)
    except OSError:
        pass

    configure_logging(app)
    db.init_app(app)
    Swagger(app)

    from igcache import models  # noqa: F401 registers the table
    from igcache.context import EXTENSION_KEY, IgCacheContext
    from igcache.routes import igs_bp

    with app.app_context():
        db.create_all()

    app.extensions[EXTENSION_KEY] = IgCacheContext(app)
    app.register_blueprint(igs_bp)

    return app
