"""
Document persistence used by the storefront core.

DocumentStore is the collaborator interface (collections of dict documents,
equality filters). JsonDocumentStore keeps one JSON file per collection under
a data directory and writes atomically, mirroring the rest of the project's
JSON-backed stores.
"""

from __future__ import annotations

import json
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set
from uuid import uuid4

from ..utils.exceptions import DocumentNotFound, PersistenceError
from ..utils.logger import get_logger

logger = get_logger(__name__)

USERS_COLLECTION = "users"
SESSIONS_COLLECTION = "sessions"
SITE_CONFIG_COLLECTION = "site_config"
PURCHASES_COLLECTION = "purchases"


class DocumentStore(ABC):
    """Async CRUD over named collections of documents keyed by "id"."""

    @abstractmethod
    async def list_documents(
        self, collection: str, filters: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_document(self, collection: str, document_id: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def create_document(
        self,
        collection: str,
        document_id: Optional[str],
        fields: Dict[str, Any],
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def update_document(
        self, collection: str, document_id: str, fields: Dict[str, Any]
    ) -> Dict[str, Any]:
        ...

    async def supported_fields(self, collection: str) -> Optional[Set[str]]:
        """Fields the collection accepts, or None when unrestricted."""
        return None


def _matches(document: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(document.get(key) == value for key, value in filters.items())


class JsonDocumentStore(DocumentStore):
    """File-backed document store: <data_dir>/<collection>.json"""

    def __init__(
        self,
        data_dir: Path | str,
        schema: Optional[Dict[str, Iterable[str]]] = None,
    ):
        self.data_dir = Path(data_dir)
        self.schema: Dict[str, Set[str]] = {
            name: set(fields) for name, fields in (schema or {}).items()
        }

    def _path(self, collection: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_" else "_" for c in collection)
        return self.data_dir / f"{safe}.json"

    def _load(self, collection: str) -> List[Dict[str, Any]]:
        path = self._path(collection)
        if not path.exists():
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            raise PersistenceError(f"Failed to load {collection} from {path}: {e}")
        return list(raw.get("documents", []))

    def _save(self, collection: str, documents: List[Dict[str, Any]]) -> None:
        path = self._path(collection)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w", dir=str(path.parent), delete=False, encoding="utf-8"
            ) as tf:
                json.dump({"documents": documents}, tf, indent=2, ensure_ascii=False, default=str)
                temp_path = Path(tf.name)
        except OSError as e:
            raise PersistenceError(f"Failed to save {collection} to {path}: {e}")
        try:
            shutil.move(str(temp_path), str(path))
        except Exception as e:
            if temp_path.exists():
                temp_path.unlink()
            raise PersistenceError(f"Failed to save {collection} to {path}: {e}")

    def _check_fields(self, collection: str, fields: Dict[str, Any]) -> None:
        allowed = self.schema.get(collection)
        if allowed is None:
            return
        unknown = sorted(set(fields) - allowed - {"id"})
        if unknown:
            raise PersistenceError(
                f"Unknown attribute(s) for {collection}: {', '.join(unknown)}"
            )

    async def list_documents(
        self, collection: str, filters: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        documents = self._load(collection)
        if not filters:
            return [dict(d) for d in documents]
        return [dict(d) for d in documents if _matches(d, filters)]

    async def get_document(self, collection: str, document_id: str) -> Dict[str, Any]:
        for document in self._load(collection):
            if document.get("id") == document_id:
                return dict(document)
        raise DocumentNotFound(collection, document_id)

    async def create_document(
        self,
        collection: str,
        document_id: Optional[str],
        fields: Dict[str, Any],
    ) -> Dict[str, Any]:
        self._check_fields(collection, fields)
        documents = self._load(collection)
        new_id = document_id or uuid4().hex
        if any(d.get("id") == new_id for d in documents):
            raise PersistenceError(f"Document '{new_id}' already exists in '{collection}'")
        document = {**fields, "id": new_id}
        documents.append(document)
        self._save(collection, documents)
        logger.debug("Document created", collection=collection, document_id=new_id)
        return dict(document)

    async def update_document(
        self, collection: str, document_id: str, fields: Dict[str, Any]
    ) -> Dict[str, Any]:
        self._check_fields(collection, fields)
        documents = self._load(collection)
        for i, document in enumerate(documents):
            if document.get("id") == document_id:
                updated = {**document, **fields, "id": document_id}
                documents[i] = updated
                self._save(collection, documents)
                return dict(updated)
        raise DocumentNotFound(collection, document_id)

    async def supported_fields(self, collection: str) -> Optional[Set[str]]:
        allowed = self.schema.get(collection)
        return set(allowed) if allowed is not None else None
