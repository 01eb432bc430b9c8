# /gamekeeper/gamekeeper/__init__.py

import atexit
import os
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from apscheduler.schedulers.background import BackgroundScheduler
from .config import Config

import logging
from concurrent_log_handler import ConcurrentRotatingFileHandler

# Create extension instances without an app
db = SQLAlchemy()
scheduler = BackgroundScheduler(daemon=True)


def create_app(config_class=Config):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)

    app.logger.setLevel(logging.INFO)

    try:
        os.makedirs(app.instance_path)
    except OSError:
        pass

    if not app.debug and not app.testing:
        log_dir = os.path.join(app.instance_path, 'logs')
        os.makedirs(log_dir, exist_ok=True)

        # Safe across the scheduler threads and multiple worker processes.
        file_handler = ConcurrentRotatingFileHandler(
            os.path.join(log_dir, 'gamekeeper.log'),
            maxBytes=10240,
            backupCount=10
        )
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'))
        app.logger.addHandler(file_handler)

    app.logger.info('gamekeeper startup')

    db.init_app(app)

    from .errors import register_error_handlers
    register_error_handlers(app)

    from . import routes
    app.register_blueprint(routes.api)

    with app.app_context():
        from . import models
        db.create_all()

        from . import jobs
        jobs.register_cli_commands(app)
        if app.config.get('SCHEDULER_ENABLED') and not app.testing:
            if not app.debug or os.environ.get('WERKZEUG_RUN_MAIN') == 'true':
                if not scheduler.running:
                    app.logger.info("Starting scheduler...")
                    jobs.register_jobs(app, scheduler)
                    scheduler.start()
                    atexit.register(lambda: scheduler.shutdown(wait=False))

    return app
