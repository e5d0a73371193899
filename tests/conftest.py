import hashlib
import hmac
import itertools
import time
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from config import Settings, get_settings
from main import app, get_order_repository
from notifications import Notifier
from orders import OrderRepository
from storage import MemoryStorage

WEBHOOK_SECRET = "whsec_test_secret"
ADMIN_KEY = "admin-key"

_ids = itertools.count(1)


class FakeCursor:
    def __init__(self, docs):
        self.docs = list(docs)

    def sort(self, key, direction=1):
        self.docs.sort(key=lambda d: d.get(key), reverse=direction == -1)
        return self

    def limit(self, n):
        self.docs = self.docs[:n]
        return self

    def __iter__(self):
        return iter(self.docs)


class FakeCollection:
    """The subset of pymongo.collection.Collection the repository uses."""

    def __init__(self):
        self.docs = []

    def _match(self, doc, filt):
        return all(doc.get(k) == v for k, v in (filt or {}).items())

    def find(self, filt=None):
        return FakeCursor(d for d in self.docs if self._match(d, filt))

    def find_one(self, filt=None):
        return next((d for d in self.docs if self._match(d, filt)), None)

    def update_one(self, filt, update, upsert=False):
        existing = self.find_one(filt)
        if existing is not None:
            existing.update(update.get("$set", {}))
            return SimpleNamespace(matched_count=1, upserted_id=None)
        if not upsert:
            return SimpleNamespace(matched_count=0, upserted_id=None)
        doc = {"_id": f"oid{next(_ids)}", **filt, **update.get("$setOnInsert", {}), **update.get("$set", {})}
        self.docs.append(doc)
        return SimpleNamespace(matched_count=0, upserted_id=doc["_id"])

    def create_index(self, keys, **kwargs):
        return "index"


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    timestamp = timestamp or int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier(clock):
    return Notifier(clock=clock)


@pytest.fixture
def settings():
    return Settings(
        stripe_api_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        admin_secret_key=ADMIN_KEY,
        site_url="https://shop.example.com",
    )


@pytest.fixture
def collection():
    return FakeCollection()


@pytest.fixture
def client(settings, collection):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_order_repository] = lambda: OrderRepository(collection)
    yield TestClient(app)
    app.dependency_overrides.clear()
