"""Shared pytest fixtures for the Meme Annotator test suite."""

import pytest

from annotation_api import AnnotationServiceError
from annotator import AnnotationController, MemeCollection
from init_database import init_database
from meme_store import MemeStore


class FakeAnnotationClient:
    """Stands in for AnnotationClient; records calls and replays canned results.

    `annotate_results` / `context_results` map meme id -> dict response or an
    exception instance to raise. Unknown ids get `default_annotate` /
    `default_context`.
    """

    def __init__(self, annotate_results=None, context_results=None,
                 default_annotate=None, default_context=None):
        self.annotate_results = annotate_results or {}
        self.context_results = context_results or {}
        self.default_annotate = default_annotate if default_annotate is not None else {}
        self.default_context = default_context if default_context is not None else {}
        self.calls = []

    def _reply(self, results, default, meme_id):
        result = results.get(meme_id, default)
        if isinstance(result, Exception):
            raise result
        return result

    def annotate(self, meme_id, meme_url):
        self.calls.append(('annotate', meme_id, meme_url))
        return self._reply(self.annotate_results, self.default_annotate, meme_id)

    def generate_context(self, meme_id, meme_url):
        self.calls.append(('generate_context', meme_id, meme_url))
        return self._reply(self.context_results, self.default_context, meme_id)


@pytest.fixture
def db_path(tmp_path):
    """Return the path of a freshly initialized temporary database."""
    path = tmp_path / "annotator.db"
    init_database(str(path))
    return str(path)


@pytest.fixture
def store(db_path):
    return MemeStore(db_path)


@pytest.fixture
def add_meme(store):
    """Insert a meme and optionally overwrite fields; returns the stored meme."""
    counter = {'n': 0}

    def _add(file_name=None, url='https://cdn.example.com/meme.png', **fields):
        counter['n'] += 1
        file_name = file_name or f"meme_{counter['n']}.png"
        meme_id = store.insert_meme(file_name, f"/tmp/{file_name}", f"hash-{counter['n']}", url)
        if fields:
            store.update(meme_id, fields)
        return store.get_meme(meme_id)

    return _add


@pytest.fixture
def fake_client():
    return FakeAnnotationClient()


@pytest.fixture
def make_controller(store):
    """Build a controller over the store's current memes with a given client."""

    def _make(client=None, client_factory=None):
        collection = MemeCollection(store.list_memes())
        factory = client_factory or (lambda: client)
        return AnnotationController(collection, store, client_factory=factory)

    return _make


@pytest.fixture
def service_error():
    return AnnotationServiceError("model overloaded", status_code=503)
