"""Document storage for jewelcart.

Each collection lives in its own JSON file under the data directory. Every
read-modify-write runs under an exclusive ``flock`` on a per-collection lock
file and finishes with write-to-temp-then-rename, so a document update is
atomic with respect to other threads and processes sharing the directory.
"""

import copy
import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

from .errors import StoreError

logger = logging.getLogger("jewelcart.store")

SCHEMA_VERSION = 1

Document = dict[str, Any]
Predicate = Callable[[Document], bool]


def _match_all(_doc: Document) -> bool:
    return True


class Collection:
    """A named list of JSON documents keyed by their ``id`` field."""

    def __init__(self, base_dir: Path, name: str):
        self.name = name
        self.base_dir = base_dir
        self.path = base_dir / f"{name}.json"
        self._lock_path = base_dir / f".{name}.lock"

    def _ensure_dir(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _lock(self) -> Iterator[None]:
        """Acquire exclusive lock on the collection file for read-modify-write operations."""
        try:
            self._ensure_dir()
            lock_file = open(self._lock_path, "w")
        except OSError as e:
            raise StoreError(self.name, str(e)) from e
        with lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _load(self) -> list[Document]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(self.name, f"cannot read {self.path}: {e}") from e

        version = data.get("schema_version", 0)
        if version != SCHEMA_VERSION:
            raise StoreError(self.name, f"unsupported schema version {version}")
        return data.get("documents", [])

    def _save(self, documents: list[Document]) -> None:
        """Save documents to disk atomically."""
        self._ensure_dir()
        data = {"schema_version": SCHEMA_VERSION, "documents": documents}
        try:
            fd, temp_path = tempfile.mkstemp(
                dir=self.base_dir, prefix=f".{self.name}_", suffix=".tmp"
            )
        except OSError as e:
            raise StoreError(self.name, str(e)) from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            os.replace(temp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise StoreError(self.name, f"cannot write {self.path}: {e}") from e

    # --- Reads ---

    def find(
        self,
        predicate: Predicate | None = None,
        sort_key: Callable[[Document], Any] | None = None,
        reverse: bool = False,
    ) -> list[Document]:
        """Return matching documents in insertion order (or sorted, stable)."""
        predicate = predicate or _match_all
        docs = [d for d in self._load() if predicate(d)]
        if sort_key is not None:
            docs.sort(key=sort_key, reverse=reverse)
        return docs

    def find_one(self, predicate: Predicate) -> Document | None:
        for doc in self._load():
            if predicate(doc):
                return doc
        return None

    def get(self, doc_id: str) -> Document | None:
        return self.find_one(lambda d: d.get("id") == doc_id)

    def count(self, predicate: Predicate | None = None) -> int:
        return len(self.find(predicate))

    # --- Writes ---

    def insert(self, doc: Document) -> Document:
        """Append a document. The caller supplies the ``id``."""
        return self.insert_many([doc])[0]

    def insert_many(self, docs: list[Document]) -> list[Document]:
        with self._lock():
            documents = self._load()
            existing = {d.get("id") for d in documents}
            for doc in docs:
                if doc.get("id") in existing:
                    raise StoreError(self.name, f"duplicate id {doc.get('id')}")
                existing.add(doc.get("id"))
            documents.extend(copy.deepcopy(docs))
            self._save(documents)
        logger.debug("Inserted %d document(s) into %s", len(docs), self.name)
        return docs

    def insert_if_absent(self, predicate: Predicate, doc: Document) -> tuple[Document, bool]:
        """
        Create-if-absent under the collection lock.

        Returns:
            (document, created) where document is the existing match when one
            was already stored.
        """
        with self._lock():
            documents = self._load()
            for existing in documents:
                if predicate(existing):
                    return existing, False
            documents.append(copy.deepcopy(doc))
            self._save(documents)
            return doc, True

    def update(self, doc_id: str, changes: Document) -> Document | None:
        """Set fields on one document. Returns the updated document or None."""
        return self.find_one_and_update(lambda d: d.get("id") == doc_id, changes)

    def find_one_and_update(
        self,
        predicate: Predicate,
        changes: Document,
        sort_key: Callable[[Document], Any] | None = None,
    ) -> Document | None:
        """
        Atomically set fields on the first matching document.

        With ``sort_key`` the first match in that (stable) order is chosen.
        """
        with self._lock():
            documents = self._load()
            candidates = [d for d in documents if predicate(d)]
            if not candidates:
                return None
            if sort_key is not None:
                candidates.sort(key=sort_key)
            target = candidates[0]
            target.update(copy.deepcopy(changes))
            self._save(documents)
            return target

    def update_many(self, predicate: Predicate, changes: Document) -> int:
        with self._lock():
            documents = self._load()
            count = 0
            for doc in documents:
                if predicate(doc):
                    doc.update(copy.deepcopy(changes))
                    count += 1
            if count:
                self._save(documents)
            return count

    def increment(self, doc_id: str, deltas: dict[str, float]) -> Document | None:
        """Atomically add each delta to its numeric field (missing fields start at 0)."""
        with self._lock():
            documents = self._load()
            for doc in documents:
                if doc.get("id") == doc_id:
                    for key, delta in deltas.items():
                        doc[key] = doc.get(key, 0) + delta
                    self._save(documents)
                    return doc
            return None

    def delete(self, doc_id: str) -> Document | None:
        """Remove a document. Returns the removed document or None."""
        with self._lock():
            documents = self._load()
            for i, doc in enumerate(documents):
                if doc.get("id") == doc_id:
                    removed = documents.pop(i)
                    self._save(documents)
                    return removed
            return None


class DocumentStore:
    """Entry point to the collections stored under one data directory."""

    ORDERS = "orders"
    PRODUCTS = "products"
    SETTINGS = "settings"
    TEMPLATES = "templates"
    QUEUE = "email_queue"
    NOTIFICATIONS = "admin_notifications"
    USERS = "users"

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self._collections: dict[str, Collection] = {}

    def collection(self, name: str) -> Collection:
        if name not in self._collections:
            self._collections[name] = Collection(self.data_dir, name)
        return self._collections[name]

    @property
    def orders(self) -> Collection:
        return self.collection(self.ORDERS)

    @property
    def products(self) -> Collection:
        return self.collection(self.PRODUCTS)

    @property
    def settings(self) -> Collection:
        return self.collection(self.SETTINGS)

    @property
    def templates(self) -> Collection:
        return self.collection(self.TEMPLATES)

    @property
    def queue(self) -> Collection:
        return self.collection(self.QUEUE)

    @property
    def notifications(self) -> Collection:
        return self.collection(self.NOTIFICATIONS)

    @property
    def users(self) -> Collection:
        return self.collection(self.USERS)

    def is_available(self) -> bool:
        """Check that the data directory can be created and written."""
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return os.access(self.data_dir, os.W_OK)
