import logging
import logging.config
import os
from dataclasses import dataclass
from pathlib import Path

from flask import Flask

import config as app_config
from config import (
    ADMIN_API_TOKEN,
    APP_SECRET_KEY,
    DB_CONNECT_TIMEOUT_SECONDS,
    DB_DSN,
    FLASK_DEBUG,
    IGDB_CLIENT_ID,
    IGDB_CLIENT_SECRET,
    IGDB_MAX_RETRIES,
    IGDB_PAGE_SIZE,
    IGDB_REQUEST_DELAY,
    IGDB_REQUEST_TIMEOUT,
    IGDB_TOKEN_SAFETY_MARGIN,
    IGDB_USER_AGENT,
    LOG_FILE,
    RECONCILE_BATCH_SIZE,
)
from igdb.client import IGDBClient
from igdb.token import TokenProvider
from mirror.store import MirrorStore
from routes import sync as routes_sync
from sync.reconcile import Reconciler
from sync.resolver import CrossReferenceResolver
from sync.service import SyncService

logger = logging.getLogger(__name__)


@dataclass
class SyncComponents:
    store: MirrorStore
    token_provider: TokenProvider
    client: IGDBClient
    service: SyncService
    resolver: CrossReferenceResolver


def _determine_log_level(flask_app: Flask | None = None) -> int:
    if flask_app is not None and flask_app.debug:
        return logging.DEBUG
    if FLASK_DEBUG:
        return logging.DEBUG
    return logging.INFO


def configure_logging(flask_app: Flask | None = None) -> None:
    """Log to stdout and to a rotating file under ``LOG_DIR``."""

    log_level = _determine_log_level(flask_app)
    log_path = Path(LOG_FILE)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    if flask_app is not None:
        for handler in list(flask_app.logger.handlers):
            flask_app.logger.removeHandler(handler)

    logging.config.dictConfig(
        {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'standard': {
                    'format': '%(asctime)s %(levelname)s [%(name)s] %(message)s',
                    'datefmt': '%Y-%m-%d %H:%M:%S',
                }
            },
            'handlers': {
                'console': {
                    'class': 'logging.StreamHandler',
                    'formatter': 'standard',
                    'level': log_level,
                    'stream': 'ext://sys.stdout',
                },
                'file': {
                    'class': 'logging.handlers.RotatingFileHandler',
                    'formatter': 'standard',
                    'level': logging.DEBUG,
                    'filename': os.fspath(log_path),
                    'maxBytes': 5 * 1024 * 1024,
                    'backupCount': 5,
                    'encoding': 'utf-8',
                },
            },
            'root': {
                'level': log_level,
                'handlers': ['console', 'file'],
            },
        }
    )

    if flask_app is not None:
        flask_app.logger = logging.getLogger(flask_app.import_name)
        flask_app.logger.setLevel(log_level)


def build_components(dsn: str | None = None) -> SyncComponents:
    """Wire the mirror store, token provider, client and sync service."""

    app_config.validate_igdb_credentials()
    store = MirrorStore.from_dsn(dsn or DB_DSN, timeout=DB_CONNECT_TIMEOUT_SECONDS)
    store.ensure_schema()
    token_provider = TokenProvider(
        IGDB_CLIENT_ID,
        IGDB_CLIENT_SECRET,
        safety_margin=IGDB_TOKEN_SAFETY_MARGIN,
        timeout=IGDB_REQUEST_TIMEOUT,
    )
    client = IGDBClient(
        token_provider,
        user_agent=IGDB_USER_AGENT,
        page_size=IGDB_PAGE_SIZE,
        request_delay=IGDB_REQUEST_DELAY,
        timeout=IGDB_REQUEST_TIMEOUT,
        max_retries=IGDB_MAX_RETRIES,
    )
    service = SyncService(
        client,
        store,
        reconciler=Reconciler(store, batch_size=RECONCILE_BATCH_SIZE),
    )
    return SyncComponents(
        store=store,
        token_provider=token_provider,
        client=client,
        service=service,
        resolver=CrossReferenceResolver(store),
    )


def configure_blueprints(
    flask_app: Flask,
    components: SyncComponents,
    *,
    admin_token: str | None = None,
) -> None:
    routes_sync.configure({
        'sync_service': components.service,
        'store': components.store,
        'resolver': components.resolver,
        'token_provider': components.token_provider,
        'admin_token': admin_token if admin_token is not None else ADMIN_API_TOKEN,
    })

    if 'sync' not in flask_app.blueprints:
        flask_app.register_blueprint(routes_sync.sync_blueprint)


def create_app(
    components: SyncComponents | None = None,
    *,
    admin_token: str | None = None,
    setup_logging: bool = True,
) -> Flask:
    """Return a configured Flask application instance."""

    flask_app = Flask(__name__)
    flask_app.secret_key = APP_SECRET_KEY
    flask_app.debug = FLASK_DEBUG
    if setup_logging:
        configure_logging(flask_app)

    if components is None:
        components = build_components()
    flask_app.extensions['catalog_mirror'] = components
    configure_blueprints(flask_app, components, admin_token=admin_token)
    logger.info("Catalog mirror app ready")
    return flask_app


if __name__ == '__main__':
    create_app().run(debug=FLASK_DEBUG)
