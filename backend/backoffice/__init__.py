from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import logging
import os

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def _connect_args(db_url: str, timeout_ms: Optional[int]) -> Dict[str, Any]:
    args: Dict[str, Any] = {}
    if db_url.startswith('sqlite'):
        args['check_same_thread'] = False
        if timeout_ms:
            # pysqlite busy timeout is expressed in seconds
            args['timeout'] = timeout_ms / 1000.0
    elif db_url.startswith('postgresql') and timeout_ms:
        args['options'] = f'-c statement_timeout={int(timeout_ms)}'
    return args


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')
    app.config['AUTHZ_CACHE_ENABLED'] = _env_flag('AUTHZ_CACHE_ENABLED', True)
    app.config['RATE_HISTORY_DEFAULT_POINTS'] = int(os.getenv('RATE_HISTORY_DEFAULT_POINTS', '30'))
    app.config['RATE_HISTORY_MAX_POINTS'] = int(os.getenv('RATE_HISTORY_MAX_POINTS', '365'))
    timeout_raw = os.getenv('DB_STATEMENT_TIMEOUT_MS')
    app.config['DB_STATEMENT_TIMEOUT_MS'] = int(timeout_raw) if timeout_raw else None

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    logging.basicConfig(format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    logging.getLogger('backoffice').setLevel(app.config['LOG_LEVEL'])
    app.logger.setLevel(app.config['LOG_LEVEL'])

    # Database
    db_url = app.config['DATABASE_URL']
    connect_args = _connect_args(db_url, app.config['DB_STATEMENT_TIMEOUT_MS'])
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args=connect_args,
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True, connect_args=connect_args)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    from .services.policy import AuthorizationEngine
    app.extensions['authz'] = AuthorizationEngine(cache_enabled=app.config['AUTHZ_CACHE_ENABLED'])

    from .routes.system import system_bp
    from .routes.iam import iam_bp
    from .routes.tickets import tickets_bp
    from .routes.rates import rates_bp
    app.register_blueprint(system_bp, url_prefix='/system')
    app.register_blueprint(iam_bp, url_prefix='/iam')
    app.register_blueprint(tickets_bp, url_prefix='/tickets')
    app.register_blueprint(rates_bp, url_prefix='/rates')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    @app.teardown_appcontext
    def remove_session(exc=None):
        if SessionLocal is not None:
            SessionLocal.remove()

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
        # Unhandled exception
        app.logger.exception('Unhandled exception')
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    return app


def get_db():
    return SessionLocal()


def get_authz():
    from flask import current_app
    return current_app.extensions['authz']
