"""
Shared fixtures: an in-memory stand-in for the Motor database.

FakeDatabase supports the subset of the Motor API the service uses and keeps
the two properties the ledger depends on: `_id` is unique, and every single
document update is atomic (no await between match and write).
"""

import asyncio
import copy
import os
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

os.environ.setdefault("MONGO_URL", "mongodb://localhost:27017")
os.environ.setdefault("DB_NAME", "extension_access_test")
os.environ.setdefault("ENVIRONMENT", "test")

sys.path.insert(0, str(Path(__file__).parent.parent))

from pymongo.errors import CollectionInvalid, DuplicateKeyError

MISSING = object()


def get_path(doc, path):
    value = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return MISSING
        value = value[part]
    return value


def set_path(doc, path, value):
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def unset_path(doc, path):
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.get(part)
        if not isinstance(target, dict):
            return
    target.pop(parts[-1], None)


def _is_operator_dict(value):
    return isinstance(value, dict) and value and all(k.startswith("$") for k in value)


def matches(doc, query):
    for key, cond in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in cond):
                return False
            continue
        if key == "$and":
            if not all(matches(doc, sub) for sub in cond):
                return False
            continue

        value = get_path(doc, key)
        if _is_operator_dict(cond):
            for op, arg in cond.items():
                if op == "$ne" and value is not MISSING and value == arg:
                    return False
                if op == "$eq" and (value is MISSING or value != arg):
                    return False
                if op == "$in" and (value is MISSING or value not in arg):
                    return False
                if op == "$exists" and (value is not MISSING) != bool(arg):
                    return False
                if op == "$gte" and (value is MISSING or value < arg):
                    return False
                if op == "$lte" and (value is MISSING or value > arg):
                    return False
        elif value is MISSING or value != cond:
            return False
    return True


def project(doc, projection):
    doc = copy.deepcopy(doc)
    if not projection:
        return doc
    include = [k for k, v in projection.items() if v and k != "_id"]
    if include:
        result = {k: doc[k] for k in include if k in doc}
        if projection.get("_id", 1) and "_id" in doc:
            result["_id"] = doc["_id"]
        return result
    for key, flag in projection.items():
        if not flag:
            doc.pop(key, None)
    return doc


def apply_update(doc, update, inserting=False):
    for path, value in update.get("$set", {}).items():
        set_path(doc, path, copy.deepcopy(value))
    if inserting:
        for path, value in update.get("$setOnInsert", {}).items():
            set_path(doc, path, copy.deepcopy(value))
    for path, amount in update.get("$inc", {}).items():
        current = get_path(doc, path)
        set_path(doc, path, (0 if current is MISSING else current) + amount)
    for path in update.get("$unset", {}):
        unset_path(doc, path)


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs
        self._limit = None

    def limit(self, n):
        self._limit = n
        return self

    def sort(self, key, direction=1):
        self._docs.sort(key=lambda d: get_path(d, key), reverse=direction < 0)
        return self

    async def to_list(self, length=None):
        await asyncio.sleep(0)
        docs = self._docs
        for bound in (self._limit, length):
            if bound:
                docs = docs[:bound]
        return docs


class FakeCollection:
    def __init__(self, name):
        self.name = name
        self.docs = {}
        self.indexes = {"_id_": {"key": [("_id", 1)]}}

    def _matching(self, query):
        return [doc for doc in self.docs.values() if matches(doc, query)]

    async def find_one(self, query=None, projection=None):
        await asyncio.sleep(0)
        found = self._matching(query)
        return project(found[0], projection) if found else None

    def find(self, query=None, projection=None):
        return FakeCursor([project(doc, projection) for doc in self._matching(query)])

    async def insert_one(self, doc):
        await asyncio.sleep(0)
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", uuid.uuid4().hex)
        if doc["_id"] in self.docs:
            raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name}", 11000)
        self.docs[doc["_id"]] = doc
        return SimpleNamespace(inserted_id=doc["_id"])

    async def update_one(self, query, update, upsert=False):
        await asyncio.sleep(0)
        found = self._matching(query)
        if found:
            doc = found[0]
            before = copy.deepcopy(doc)
            apply_update(doc, update)
            return SimpleNamespace(matched_count=1, modified_count=int(before != doc), upserted_id=None)
        if not upsert:
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

        doc = {}
        for key, value in query.items():
            if not key.startswith("$") and not _is_operator_dict(value):
                set_path(doc, key, copy.deepcopy(value))
        apply_update(doc, update, inserting=True)
        doc.setdefault("_id", uuid.uuid4().hex)
        if doc["_id"] in self.docs:
            raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name}", 11000)
        self.docs[doc["_id"]] = doc
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=doc["_id"])

    async def delete_one(self, query):
        await asyncio.sleep(0)
        found = self._matching(query)
        if found:
            del self.docs[found[0]["_id"]]
        return SimpleNamespace(deleted_count=len(found[:1]))

    async def count_documents(self, query):
        await asyncio.sleep(0)
        return len(self._matching(query))

    async def create_index(self, keys, **options):
        name = options.get("name") or "_".join(f"{k}_{d}" for k, d in keys)
        self.indexes[name] = {"key": keys, **options}
        return name

    async def index_information(self):
        return copy.deepcopy(self.indexes)

    def seed(self, *docs):
        for doc in docs:
            doc = copy.deepcopy(doc)
            doc.setdefault("_id", uuid.uuid4().hex)
            self.docs[doc["_id"]] = doc


class FakeDatabase:
    def __init__(self):
        self._collections = {}

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]

    async def list_collection_names(self):
        return list(self._collections)

    async def create_collection(self, name):
        if name in self._collections:
            raise CollectionInvalid(f"collection {name} already exists")
        return self[name]


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def now():
    return datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)
