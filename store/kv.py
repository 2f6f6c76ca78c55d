"""
Key-value substrate behind the record store.

Every backend holds flat string keys mapped to JSON text. ``write`` applies
several keys at once and is atomic for each backend, which is what the
patient rename cascade and the reset rely on.
"""
import json
import logging
import os
import tempfile
from typing import Dict, Mapping, Optional

from pymongo import MongoClient

from store.config import StoreSettings

logger = logging.getLogger(__name__)


class KeyValueStore:
    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def write(self, changes: Mapping[str, Optional[str]]) -> None:
        """Apply all changes in one step. A value of ``None`` removes the key."""
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        self.write({key: value})

    def remove(self, key: str) -> None:
        self.write({key: None})


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: Optional[Mapping[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def write(self, changes: Mapping[str, Optional[str]]) -> None:
        for key, value in changes.items():
            if value is None:
                self._data.pop(key, None)
            else:
                self._data[key] = value

    def keys(self):
        return list(self._data)


class JsonFileKeyValueStore(KeyValueStore):
    """
    All keys live in a single JSON object on disk.

    - The file is created lazily on the first write
    - Writes go to a temp file in the same directory and are moved in place
      with ``os.replace`` so a crash never leaves half a file behind
    """

    def __init__(self, path: str):
        self.path = path

    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise RuntimeError(f"Store file '{self.path}' is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise RuntimeError(f"Store file '{self.path}' must contain a JSON object")
        return data

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def write(self, changes: Mapping[str, Optional[str]]) -> None:
        data = self._load()
        for key, value in changes.items():
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value

        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".store-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise


class MongoKeyValueStore(KeyValueStore):
    """
    Keys stored as fields of one MongoDB document per namespace.

    A single-document ``update_one`` is atomic in MongoDB, so ``write`` never
    leaves a cascade half applied.
    """

    def __init__(
        self,
        mongo_uri: Optional[str] = None,
        db_name: Optional[str] = None,
        collection_name: Optional[str] = None,
        namespace: str = "default",
        collection=None,
    ):
        self.namespace = namespace
        if collection is not None:
            self.collection = collection
            return

        self.mongo_uri = mongo_uri or os.getenv("MONGO_URI")
        self.db_name = db_name or os.getenv("MONGO_DB_NAME", "scan_registry")
        self.collection_name = collection_name or os.getenv("MONGO_KV_COLLECTION", "local_storage")

        if not self.mongo_uri:
            raise RuntimeError("Missing MONGO_URI in environment or .env file")

        self.client = MongoClient(self.mongo_uri)
        self.collection = self.client[self.db_name][self.collection_name]

    def get(self, key: str) -> Optional[str]:
        doc = self.collection.find_one({"_id": self.namespace}, {key: 1})
        if not doc:
            return None
        return doc.get(key)

    def write(self, changes: Mapping[str, Optional[str]]) -> None:
        to_set = {k: v for k, v in changes.items() if v is not None}
        to_unset = {k: "" for k, v in changes.items() if v is None}
        update = {}
        if to_set:
            update["$set"] = to_set
        if to_unset:
            update["$unset"] = to_unset
        if not update:
            return
        result = self.collection.update_one({"_id": self.namespace}, update, upsert=True)
        logger.debug(
            "[MongoKV] namespace=%s keys=%s matched=%s",
            self.namespace, sorted(changes), result.matched_count,
        )


def open_store(settings: Optional[StoreSettings] = None) -> KeyValueStore:
    settings = settings or StoreSettings.from_env()
    if settings.backend == "memory":
        return MemoryKeyValueStore()
    if settings.backend == "mongo":
        return MongoKeyValueStore(
            mongo_uri=settings.mongo_uri,
            db_name=settings.mongo_db_name,
            collection_name=settings.mongo_collection,
            namespace=settings.namespace,
        )
    return JsonFileKeyValueStore(settings.path)
