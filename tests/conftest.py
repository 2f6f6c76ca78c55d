import copy
from types import SimpleNamespace

import pytest

from store.kv import MemoryKeyValueStore
from store.record_store import LocalRecordStore


class FakeCollection:
    """Just enough of a pymongo collection for MongoKeyValueStore."""

    def __init__(self):
        self.docs = {}
        self.updates = []

    def find_one(self, filter, projection=None):
        doc = self.docs.get(filter["_id"])
        if doc is None:
            return None
        if projection:
            return {k: v for k, v in doc.items() if k in projection or k == "_id"}
        return copy.deepcopy(doc)

    def update_one(self, filter, update, upsert=False):
        self.updates.append(update)
        key = filter["_id"]
        matched = 1 if key in self.docs else 0
        if not matched and not upsert:
            return SimpleNamespace(matched_count=0)
        doc = self.docs.setdefault(key, {"_id": key})
        doc.update(update.get("$set", {}))
        for field in update.get("$unset", {}):
            doc.pop(field, None)
        return SimpleNamespace(matched_count=matched)


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv):
    s = LocalRecordStore(kv)
    s.reset_all()
    return s


@pytest.fixture
def fake_collection():
    return FakeCollection()


@pytest.fixture
def jane(store):
    return store.patients.create(
        name="Jane Doe", age=40, patient_id="P-00001", contact_number="555-0100"
    )
