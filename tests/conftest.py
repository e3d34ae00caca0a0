"""Shared fakes for the ingest pipeline tests."""

import pytest
import requests

import db
from assembler import ListingAssembler
from conversation import ConversationStateMachine
from db import ListingRepo
from errors import StorageError
from media import MediaAcquirer
from scraper import MotorcycleScraper

HONDA_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>JM Moto</title></head>
<body>
  <header><img src="/assets/logo.png"><img src="/vite.svg"></header>
  <main>
    <div class="styles_text__abc styles_weight--semi-bold__xyz">Каталог</div>
    <div class="styles_text__abc styles_weight--semi-bold__xyz">Honda CB500X</div>
    <div class="specs">
      <div>Год: 2021</div>
      <div>Пробег: 15000 км</div>
      <div>Объем: 471 сс</div>
      <div>Номер рамы: PC64-1234567</div>
    </div>
    <div class="gallery">
      <img src="/uploads/cb500x-1.jpg">
      <img src="//cdn.jmmoto.ru/uploads/cb500x-2.jpg">
      <img data-src="https://jmmoto.ru/uploads/cb500x-3.jpg">
      <img src="/uploads/cb500x-1.jpg">
      <img src="data:image/gif;base64,R0lGODlhAQABAAAAACw=">
    </div>
  </main>
</body>
</html>
"""


class FakeResponse:
    def __init__(self, status_code=200, content=b"", headers=None, json_data=None):
        self.status_code = status_code
        self.content = content
        self.headers = {"Content-Type": "text/html; charset=utf-8"} if headers is None else headers
        self._json = json_data

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json


class FakeSession:
    """Stands in for requests.Session. Routes map URL -> FakeResponse or exception."""

    def __init__(self, routes=None, default=None):
        self.routes = routes or {}
        self.default = default
        self.headers = {}
        self.calls = []

    def _respond(self, url):
        result = self.routes.get(url, self.default)
        if result is None:
            raise requests.ConnectionError(f"no route for {url}")
        if isinstance(result, list):
            result = result.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def get(self, url, **kwargs):
        self.calls.append(("GET", url, kwargs))
        return self._respond(url)

    def post(self, url, **kwargs):
        self.calls.append(("POST", url, kwargs))
        return self._respond(url)


class FakeStorage:
    """In-memory ImageStorage. Source URLs listed in ``fail`` raise StorageError."""

    def __init__(self, fail=()):
        self.fail = set(fail)
        self.objects = {}
        self.by_url_calls = []

    def store_by_url(self, source_url, key):
        self.by_url_calls.append((source_url, key))
        if source_url in self.fail:
            raise StorageError(f"Got 404 for {source_url}")
        self.objects[key] = source_url.encode()
        return f"https://media.example/{key}"

    def store_by_bytes(self, data, key):
        self.objects[key] = data
        return f"https://media.example/{key}"


def html_response(html, status_code=200):
    return FakeResponse(status_code=status_code, content=html.encode("utf-8"))


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "test.db")
    db.init_db(path)
    return path


@pytest.fixture
def repo(db_path):
    return ListingRepo(db_path)


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def page_session():
    return FakeSession({"https://jmmoto.ru/moto/honda-cb500x": html_response(HONDA_PAGE)})


@pytest.fixture
def assembler(repo, storage, page_session):
    scraper = MotorcycleScraper(session=page_session, retry_delays=[])
    media = MediaAcquirer(storage, repo=repo)
    return ListingAssembler(repo, scraper, media, currency="RUB")


@pytest.fixture
def conversations(repo):
    return ConversationStateMachine(repo)
