"""
Pytest fixtures and fake adapters for gamekeeper tests
"""
from types import SimpleNamespace

import pytest

from gamekeeper import create_app, db
from gamekeeper.clients import DOWNLOAD_CLIENT_KEY, INDEXER_KEY, METADATA_KEY, NOTIFIER_KEY
from gamekeeper.config import TestConfig
from gamekeeper.errors import AdapterUnavailable
from gamekeeper.models import Game, GrabbedRelease, Library

HASH_A = 'a' * 40
HASH_B = 'b' * 40


class FakeIndexer:
    def __init__(self):
        self.releases = []
        self.queries = []
        self.unreachable = False

    def search(self, query, categories=None, limit=100):
        self.queries.append(query)
        if self.unreachable:
            raise AdapterUnavailable('indexer', 'connection refused')
        return [dict(r) for r in self.releases]

    def test_connection(self):
        return not self.unreachable


class FakeDownloadClient:
    def __init__(self):
        self.downloads = []
        self.added = []
        self.actions = []
        self.next_hash = HASH_A
        self.fail_add = False
        self.unreachable = False
        self.on_add = None

    def add(self, locator, category, save_path=None):
        if self.on_add:
            self.on_add(locator)
        if self.fail_add or self.unreachable:
            raise AdapterUnavailable('download client', 'connection refused')
        self.added.append({'locator': locator, 'category': category, 'save_path': save_path})
        return self.next_hash

    def list(self):
        if self.unreachable:
            raise AdapterUnavailable('download client', 'connection refused')
        return [dict(d) for d in self.downloads]

    def pause(self, torrent_hash):
        self.actions.append(('pause', torrent_hash))

    def resume(self, torrent_hash):
        self.actions.append(('resume', torrent_hash))

    def cancel(self, torrent_hash, delete_files=False):
        self.actions.append(('cancel', torrent_hash, delete_files))

    def list_categories(self):
        return ['gamekeeper', 'games-pc']

    def test_connection(self):
        return not self.unreachable


class FakeMetadata:
    def __init__(self):
        self.candidates = []

    def search(self, title, limit=20):
        return [dict(c) for c in self.candidates]


class FakeNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event, title, description=None):
        self.events.append((event, title))
        return True


@pytest.fixture
def fakes():
    return SimpleNamespace(
        indexer=FakeIndexer(),
        download_client=FakeDownloadClient(),
        metadata=FakeMetadata(),
        notifier=FakeNotifier(),
    )


@pytest.fixture
def app(fakes):
    """Application on an in-memory database with every external system faked."""
    app = create_app(TestConfig)
    app.extensions[INDEXER_KEY] = fakes.indexer
    app.extensions[DOWNLOAD_CLIENT_KEY] = fakes.download_client
    app.extensions[METADATA_KEY] = fakes.metadata
    app.extensions[NOTIFIER_KEY] = fakes.notifier
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_game(app):
    def _make_game(**fields):
        fields.setdefault('title', 'Foo')
        game = Game(**fields)
        db.session.add(game)
        db.session.commit()
        return game
    return _make_game


@pytest.fixture
def make_library(app):
    def _make_library(path, **fields):
        fields.setdefault('name', 'Main')
        library = Library(path=str(path), **fields)
        db.session.add(library)
        db.session.commit()
        return library
    return _make_library


@pytest.fixture
def release():
    def _release(**fields):
        data = {
            'guid': 'abc',
            'title': 'Foo v1.2-CODEX',
            'indexer': 'TestTracker',
            'size': 10 * 1024 ** 3,
            'seeders': 30,
            'categories': [4050],
            'download_url': f'magnet:?xt=urn:btih:{HASH_A}',
        }
        data.update(fields)
        return data
    return _release


@pytest.fixture
def downloading_grab(app, make_game):
    """A game with one release sent to the download client as HASH_A."""
    game = make_game(status='downloading')
    grab = GrabbedRelease(game_id=game.id, guid='abc', title='Foo v1.2-CODEX', quality='Scene',
                          size=10 * 1024 ** 3, download_url=f'magnet:?xt=urn:btih:{HASH_A}',
                          torrent_hash=HASH_A, status='downloading')
    db.session.add(grab)
    db.session.commit()
    return grab
