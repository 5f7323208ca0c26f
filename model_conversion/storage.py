"""
Storage collaborators.

The conversion service talks to two external systems:

- object storage, which turns a local file into a public URL
- the model store, which holds the long-lived model record other parts of
  the platform read (status, logs, artifact URLs, metadata)

Both are protocols. The local/in-memory implementations here back the CLI
and the tests.
"""

import shutil
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple


class PersistenceWarning(UserWarning):
    """A model-store write failed; in-memory job state stays authoritative."""
    pass


class ObjectStorage(Protocol):
    def upload(self, local_path: Path, key: str, content_type: Optional[str] = None) -> str:
        """
        Store a local file under a logical key and return its public URL.

        content_type is optional and always passed by keyword; backends
        that do not set a MIME type may ignore it.
        """
        ...


class ModelStore(Protocol):
    def update_model(self, model_id: str, fields: Dict[str, Any]) -> None:
        ...

    def short_link_exists(self, short_link: str) -> bool:
        ...


class LocalObjectStorage:
    """Object storage backed by a local directory tree."""

    def __init__(self, root: Path, public_base_url: Optional[str] = None):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.content_types: Dict[str, str] = {}
        self._lock = threading.Lock()

    def upload(self, local_path: Path, key: str, content_type: Optional[str] = None) -> str:
        key = key.lstrip("/")
        if ".." in Path(key).parts:
            raise ValueError(f"Invalid storage key: {key}")

        destination = self.root / key
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(local_path, destination)

        with self._lock:
            if content_type:
                self.content_types[key] = content_type

        if self.public_base_url is None:
            return destination.resolve().as_uri()
        return f"{self.public_base_url}/{key}"

    def path_for(self, key: str) -> Path:
        return self.root / key.lstrip("/")


class InMemoryModelStore:
    """Thread-safe model store keeping merged records and an update history."""

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}
        self.history: List[Tuple[str, Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def create_model(self, model_id: str, **fields) -> Dict[str, Any]:
        with self._lock:
            record = {"id": model_id, "status": "uploading", "processingLogs": []}
            record.update(fields)
            self.records[model_id] = record
            return dict(record)

    def update_model(self, model_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            record = self.records.setdefault(model_id, {"id": model_id})
            snapshot = {
                k: list(v) if isinstance(v, list) else v
                for k, v in fields.items()
            }
            record.update(snapshot)
            self.history.append((model_id, snapshot))

    def get_model(self, model_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self.records.get(model_id)
            return dict(record) if record else None

    def short_link_exists(self, short_link: str) -> bool:
        with self._lock:
            return any(r.get("shortLink") == short_link for r in self.records.values())

    def updates_for(self, model_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [fields for mid, fields in self.history if mid == model_id]
