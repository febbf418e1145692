# campusvote/__init__.py

import logging
import os
from datetime import timedelta
from types import SimpleNamespace

from flask import Flask
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from werkzeug.middleware.proxy_fix import ProxyFix

from campusvote.config import Config

# Extensions are bound to an application in create_app()
db = SQLAlchemy()  # Database ORM
migrate = Migrate()  # DB migrations
jwt = JWTManager()  # Voter/admin session tokens
limiter = Limiter(key_func=get_remote_address)

MIGRATIONS_DIR = os.path.join(os.path.dirname(__file__), 'database', 'migrations')


def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Fix proxy headers for HTTPS
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

    if app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite'):
        options = app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS', {})
        options.setdefault('connect_args', {'timeout': 30, 'check_same_thread': False})
    else:
        app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS', {'pool_pre_ping': True})

    db.init_app(app)
    migrate.init_app(app, db, directory=MIGRATIONS_DIR)
    jwt.init_app(app)
    limiter.init_app(app)

    # Ensure model modules are imported so SQLAlchemy metadata is populated
    from campusvote.database import models  # noqa: F401

    with app.app_context():
        if db.engine.dialect.name == 'sqlite':
            _serialize_sqlite_transactions(db.engine)

    from campusvote.routes import register_error_handlers, register_jwt_callbacks
    from campusvote.routes import bp as routes_bp
    from campusvote.commands import register_commands

    app.register_blueprint(routes_bp)
    register_error_handlers(app)
    register_jwt_callbacks(jwt)
    register_commands(app)

    app.extensions['campusvote'] = build_services(app.config)
    return app


def build_services(config, embedder=None, llm=None):
    """Wire the voting and manifesto services from configuration.

    ``embedder`` and ``llm`` may be passed in to replace the HTTP clients.
    """
    from campusvote.audit.audit_logger import AuditLogger
    from campusvote.manifesto.ai_clients import ChatClient, EmbeddingClient
    from campusvote.manifesto.faq import FAQGenerator
    from campusvote.manifesto.qa import ManifestoQA
    from campusvote.manifesto.vector_store import ManifestoVectorStore
    from campusvote.security.token_manager import SessionManager
    from campusvote.voting.ballot import BallotService

    audit_logger = AuditLogger(
        log_dir=config['AUDIT_LOG_DIR'],
        signing_key_pem=config.get('AUDIT_SIGNING_KEY_PEM'),
    )
    sessions = SessionManager(max_age=timedelta(minutes=config['VOTER_SESSION_MINUTES']))
    if embedder is None:
        embedder = EmbeddingClient(
            api_url=config['EMBEDDING_API_URL'],
            api_key=config['EMBEDDING_API_KEY'],
            timeout=config['AI_TIMEOUT_SECONDS'],
        )
    if llm is None:
        llm = ChatClient(
            api_url=config['LLM_API_URL'],
            api_key=config['LLM_API_KEY'],
            model=config['LLM_MODEL'],
            temperature=config['LLM_TEMPERATURE'],
            timeout=config['AI_TIMEOUT_SECONDS'],
        )
    vector_store = ManifestoVectorStore(embedder)
    qa = ManifestoQA(vector_store, llm)
    return SimpleNamespace(
        audit=audit_logger,
        sessions=sessions,
        ballots=BallotService(
            sessions,
            audit_logger=audit_logger,
            require_complete_ballot=config['REQUIRE_COMPLETE_BALLOT'],
        ),
        vector_store=vector_store,
        qa=qa,
        faq=FAQGenerator(qa),
    )


def _serialize_sqlite_transactions(engine):
    # pysqlite defers BEGIN until the first write; take the write lock up front
    # so the has-voted check and the ballot commit run as one serialized unit.
    @event.listens_for(engine, 'connect')
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _begin_immediate(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')
