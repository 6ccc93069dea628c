import copy
import json

import pytest

from activation import create_app
from activation.bindings import BindingCache, BindingManager
from activation.admin import CodeAdmin
from activation.errors import Conflict, TransportError
from activation.registry import CodeRegistry
from activation.repository import CodeRepository
from activation.store import DocumentStore


class MemoryStore(DocumentStore):
    """DocumentStore keeping the remote document in memory."""

    def __init__(self, document=None, configured=True, **kwargs):
        super().__init__(token='t', owner='o', repo='r', session=object(), **kwargs)
        self.document = document if document is not None else {'codes': []}
        self.revision = 1
        self.is_configured = configured
        self.conflicts = 0
        self.broken = False
        self.puts = []

    @property
    def configured(self):
        return self.is_configured

    def fetch(self):
        self._check_configured()
        if self.broken:
            raise TransportError('Fetch failed: 503 Service Unavailable')
        return copy.deepcopy(self.document), str(self.revision)

    def put(self, document, sha, message):
        self._check_configured()
        if self.conflicts:
            self.conflicts -= 1
            self.revision += 1
            raise Conflict()
        if sha != str(self.revision):
            raise Conflict()
        self.document = copy.deepcopy(document)
        self.revision += 1
        self.puts.append(message)
        return 'commit-%d' % self.revision


def sample_codes():
    return [
        {'code': 'VIP-AAA111', 'note': 'first', 'expiresAt': None, 'active': True,
         'createdAt': '2025-01-01T00:00:00.000Z'},
        {'code': 'VIP-OLD000', 'note': 'old', 'expiresAt': '2020-01-01T00:00:00.000Z', 'active': True,
         'createdAt': '2019-01-01T00:00:00.000Z'},
        {'code': 'VIP-OFF000', 'note': 'off', 'expiresAt': None, 'active': False,
         'createdAt': '2025-01-01T00:00:00.000Z'},
    ]


@pytest.fixture
def codes_file(tmp_path):
    path = tmp_path / 'codes.json'
    path.write_text(json.dumps({'codes': sample_codes()}, indent=2), encoding='utf-8')
    return path


@pytest.fixture
def store():
    return MemoryStore(document={'codes': sample_codes()})


@pytest.fixture
def registry(codes_file):
    return CodeRegistry(str(codes_file)).load()


@pytest.fixture
def repository(registry, store):
    return CodeRepository(registry, store)


@pytest.fixture
def manager(repository):
    manager = BindingManager(repository, BindingCache())
    manager.warm()
    return manager


@pytest.fixture
def admin(repository, manager):
    return CodeAdmin(repository, manager.cache)


@pytest.fixture
def app(codes_file, store):
    app = create_app({'TESTING': True, 'CODES_FILE': str(codes_file), 'ADMIN_PASSWORD': ''}, store=store)
    return app


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client
