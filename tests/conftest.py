"""
Shared fixtures.

The app runs against an in-memory stand-in for a pymongo database, so the real
DocumentStore and IdentityProvider are exercised end to end.
"""

import copy
import itertools
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from database import COMPTES, UTILISATEURS, DocumentStore, get_store
from identity import IdentityProvider, get_identity
from main import app


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs

    def sort(self, key, direction):
        self._docs = sorted(self._docs, key=lambda d: d.get(key), reverse=direction == DESCENDING)
        return self

    def __iter__(self):
        return iter(self._docs)


class FakeCollection:
    """The subset of pymongo.collection.Collection the app uses. Equality filters only."""

    def __init__(self):
        self.docs = {}
        self.unique_keys = set()

    @staticmethod
    def _matches(doc, filter_dict):
        return all(doc.get(k) == v for k, v in (filter_dict or {}).items())

    def _check_unique(self, doc, own_id=None):
        for key in self.unique_keys:
            value = doc.get(key)
            if value is None:
                continue
            for other_id, other in self.docs.items():
                if other_id != own_id and other.get(key) == value:
                    raise DuplicateKeyError(
                        f"E11000 duplicate key error index: {key}_1",
                        11000,
                        {"keyPattern": {key: 1}, "keyValue": {key: value}},
                    )

    def insert_one(self, doc):
        if doc["_id"] in self.docs:
            raise DuplicateKeyError(f"duplicate _id {doc['_id']}", 11000, {"keyPattern": {"_id": 1}})
        self._check_unique(doc)
        self.docs[doc["_id"]] = copy.deepcopy(doc)
        return SimpleNamespace(inserted_id=doc["_id"])

    def find_one(self, filter_dict=None):
        for doc in self.docs.values():
            if self._matches(doc, filter_dict):
                return copy.deepcopy(doc)
        return None

    def find(self, filter_dict=None):
        return FakeCursor([copy.deepcopy(d) for d in self.docs.values() if self._matches(d, filter_dict)])

    def update_one(self, filter_dict, update):
        for doc in self.docs.values():
            if self._matches(doc, filter_dict):
                self._check_unique({**doc, **update["$set"]}, own_id=doc["_id"])
                doc.update(copy.deepcopy(update["$set"]))
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    def delete_one(self, filter_dict):
        for key, doc in list(self.docs.items()):
            if self._matches(doc, filter_dict):
                del self.docs[key]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    def create_index(self, key, unique=False, **kwargs):
        if unique:
            self.unique_keys.add(key)
        return f"{key}_1"

    def count_documents(self, filter_dict):
        return sum(1 for d in self.docs.values() if self._matches(d, filter_dict))


class FakeDatabase:
    def __init__(self):
        self.collections = {}

    def __getitem__(self, name):
        return self.collections.setdefault(name, FakeCollection())

    def list_collection_names(self):
        return list(self.collections)


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def store(db):
    return DocumentStore(db)


@pytest.fixture
def identity(db):
    provider = IdentityProvider(db[COMPTES], secret="test-secret")
    provider.ensure_indexes()
    return provider


@pytest.fixture
def client(store, identity):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_identity] = lambda: identity
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(store, identity):
    """Create an account plus its directory entry; returns (uid, bearer token)."""
    counter = itertools.count(1)

    def _make(role="client", with_profile=True, **extra):
        n = next(counter)
        email = f"user{n}@example.com"
        telephone = f"+2376000{n:05d}"
        uid = identity.create_account(email, "secret123", f"Prenom{n} Nom{n}", telephone)
        if with_profile:
            now = datetime.now(timezone.utc)
            profile = {
                "email": email,
                "nom": f"Nom{n}",
                "prenom": f"Prenom{n}",
                "telephone": telephone,
                "createdAt": now,
                "updatedAt": now,
                **extra,
            }
            if role is not None:
                profile["role"] = role
            store.set_document(UTILISATEURS, uid, profile)
        return uid, identity.issue_token(uid)

    return _make


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
