import logging
from dataclasses import dataclass

from flask import Flask
from flask_cors import CORS

from .admin import CodeAdmin
from .bindings import BindingCache, BindingManager
from .config import Config
from .registry import CodeRegistry
from .repository import CodeRepository
from .store import DocumentStore

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(message)s'


@dataclass
class Services:
    registry: CodeRegistry
    repository: CodeRepository
    bindings: BindingManager
    admin: CodeAdmin


def configure_logging(level='INFO'):
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format=LOG_FORMAT)


def create_app(config=None, store=None):
    """Build the Flask app.

    ``config`` overrides values from :class:`Config`; ``store`` replaces the
    GitHub-backed document store (tests pass an in-memory one).
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    configure_logging(app.config['LOG_LEVEL'])
    CORS(app)

    registry = CodeRegistry(app.config['CODES_FILE']).load()
    if store is None:
        store = DocumentStore.from_config(app.config)
    if not store.configured:
        app.logger.warning('Remote store not configured, changes are kept in %s only', registry.path)

    repository = CodeRepository(registry, store)
    if app.config['SYNC_ON_START']:
        repository.sync()

    cache = BindingCache()
    manager = BindingManager(repository, cache)
    manager.warm()

    app.extensions['activation'] = Services(
        registry=registry,
        repository=repository,
        bindings=manager,
        admin=CodeAdmin(repository, cache),
    )

    from .routes import api
    app.register_blueprint(api)

    return app
