import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

BACKENDS = ("file", "mongo", "memory")


def default_store_path() -> str:
    return os.path.join(os.getcwd(), ".record_store", "store.json")


@dataclass
class StoreSettings:
    backend: str = "file"
    path: str = field(default_factory=default_store_path)
    mongo_uri: Optional[str] = None
    mongo_db_name: str = "scan_registry"
    mongo_collection: str = "local_storage"
    namespace: str = "default"

    @classmethod
    def from_env(cls) -> "StoreSettings":
        defaults = cls()
        backend = os.getenv("RECORD_STORE_BACKEND", defaults.backend).strip().lower()
        if backend not in BACKENDS:
            raise RuntimeError(
                f"Unsupported RECORD_STORE_BACKEND '{backend}', expected one of {', '.join(BACKENDS)}"
            )
        return cls(
            backend=backend,
            path=os.getenv("RECORD_STORE_PATH", defaults.path),
            mongo_uri=os.getenv("MONGO_URI"),
            mongo_db_name=os.getenv("MONGO_DB_NAME", defaults.mongo_db_name),
            mongo_collection=os.getenv("MONGO_KV_COLLECTION", defaults.mongo_collection),
            namespace=os.getenv("RECORD_STORE_NAMESPACE", defaults.namespace),
        )
