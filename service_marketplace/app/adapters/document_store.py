"""
In-memory document store used by the marketplace routes.

Stands in for the document database: collections of JSON-like documents
addressed by ``id``, with equality filters where a list-valued field
matches when it contains the filter value.
"""

import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from shared.logging import get_logger


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _matches(document: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    for field_name, expected in filters.items():
        actual = document.get(field_name)
        if isinstance(actual, list):
            if expected not in actual:
                return False
        elif actual != expected:
            return False
    return True


class InMemoryDocumentStore:
    """Async document collections held in process memory.

    Documents are copied on the way in and out so callers never share
    mutable state with the store (or with cached payloads).
    """

    def __init__(self, id_factory: Callable[[], str] = lambda: uuid.uuid4().hex):
        self.logger = get_logger("marketplace.document_store")
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._id_factory = id_factory

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(name, {})

    async def insert(self, collection: str, document: Mapping[str, Any]) -> Dict[str, Any]:
        timestamp = _now()
        stored = {
            **copy.deepcopy(dict(document)),
            "id": self._id_factory(),
            "createdAt": timestamp,
            "updatedAt": timestamp,
        }
        self._collection(collection)[stored["id"]] = stored
        self.logger.debug("Inserted document", collection=collection, id=stored["id"])
        return copy.deepcopy(stored)

    async def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        document = self._collection(collection).get(document_id)
        return copy.deepcopy(document) if document is not None else None

    async def find(
        self,
        collection: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        sort_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Dict[str, Any]]:
        filters = {name: value for name, value in (filters or {}).items() if value is not None}
        documents = [
            copy.deepcopy(document)
            for document in self._collection(collection).values()
            if _matches(document, filters)
        ]
        if sort_by is not None:
            documents.sort(key=lambda document: document.get(sort_by) or "", reverse=descending)
        return documents

    async def find_one(self, collection: str, filters: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        documents = await self.find(collection, filters)
        return documents[0] if documents else None

    async def count(self, collection: str, filters: Optional[Mapping[str, Any]] = None) -> int:
        return len(await self.find(collection, filters))

    async def update(
        self,
        collection: str,
        document_id: str,
        changes: Mapping[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """Apply ``changes`` and return the updated document, or None if missing."""
        document = self._collection(collection).get(document_id)
        if document is None:
            return None

        document.update(copy.deepcopy(dict(changes)))
        document["id"] = document_id
        document["updatedAt"] = _now()
        return copy.deepcopy(document)

    async def update_many(
        self,
        collection: str,
        filters: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> int:
        updated = 0
        for document in self._collection(collection).values():
            if _matches(document, filters):
                document.update(copy.deepcopy(dict(changes)))
                document["updatedAt"] = _now()
                updated += 1
        return updated

    async def delete(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        """Remove and return the document, or None if it did not exist."""
        return self._collection(collection).pop(document_id, None)
