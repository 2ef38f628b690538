from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import logging

from .config.settings import load_settings
from .errors import ShopAdminError

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _configure_logging(level: str):
    logger = logging.getLogger('shopadmin')
    logger.setLevel(level)
    # Avoid duplicate handlers when create_app runs more than once (tests, reloader)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config.update(load_settings())

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    _configure_logging(app.config['LOG_LEVEL'])

    # Database
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    from .routes.iam import iam_bp
    from .routes.inventory import inv_bp
    from .routes.catalog import cat_bp
    from .routes.sales import sales_bp
    from .routes.notifications import notif_bp
    app.register_blueprint(iam_bp, url_prefix='/iam')
    app.register_blueprint(inv_bp, url_prefix='/inventory')
    app.register_blueprint(cat_bp, url_prefix='/catalog')
    app.register_blueprint(sales_bp, url_prefix='/sales')
    app.register_blueprint(notif_bp, url_prefix='/notifications')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    @app.errorhandler(ShopAdminError)
    def handle_domain_error(e):  # type: ignore
        get_db().rollback()
        if e.status_code >= 500:
            app.logger.exception('%s: %s', type(e).__name__, e.detail)
        return {'error': e.to_dict()}, e.status_code

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            return payload, e.code
        get_db().rollback()
        app.logger.exception('Unhandled exception')
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    if app.config['SCHEDULER_ENABLED']:
        from .jobs import start_scheduler
        app.extensions['scheduler'] = start_scheduler(app)

    return app


def get_db():
    return SessionLocal()
