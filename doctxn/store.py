"""Document store interface and an in-memory implementation."""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional, Callable, Tuple

from .exceptions.transaction_exceptions import StoreError, DocumentValidationError

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Validator = Callable[[Document], bool]

_MISSING = object()


class DocumentStore(ABC):
    """
    Key-addressable document store with single-document atomicity.

    Every collection is addressed by a (scope, collection) pair. Filters and
    updates use the Mongo query vocabulary: equality, ``$exists``, ``$lt`` and
    ``$lte`` in filters; ``$set`` and ``$unset`` in updates. An equality
    filter on ``None`` matches a missing field as well as an explicit null.
    """

    @abstractmethod
    def find_one(self, scope: str, collection: str, filter: Document) -> Optional[Document]:
        """Return the first document matching ``filter``, or None."""

    @abstractmethod
    def find(self, scope: str, collection: str, filter: Document) -> List[Document]:
        """Return all documents matching ``filter``."""

    @abstractmethod
    def insert_one(self, scope: str, collection: str, document: Document) -> None:
        """Insert a new document; fails if its ``_id`` is taken."""

    @abstractmethod
    def replace_one(
        self,
        scope: str,
        collection: str,
        doc_id: Any,
        document: Document,
        upsert: bool = False,
    ) -> bool:
        """Replace the whole document with ``doc_id``. Returns True if written."""

    @abstractmethod
    def find_one_and_update(
        self,
        scope: str,
        collection: str,
        filter: Document,
        update: Document,
        return_after: bool = False,
    ) -> Optional[Document]:
        """
        Atomically update the first document matching ``filter``.

        Returns the document before the update (or after it, when
        ``return_after`` is set), or None when nothing matched.
        """

    @abstractmethod
    def delete_one(self, scope: str, collection: str, doc_id: Any) -> bool:
        """Delete the document with ``doc_id``. Returns True if one was removed."""


class InMemoryDocumentStore(DocumentStore):
    """
    Thread-safe in-process document store.

    All operations are serialized with one re-entrant lock, which makes each
    of them linearizable. Documents are deep-copied on the way in and out so
    callers never share state with the store.
    """

    def __init__(self):
        self.collections: Dict[Tuple[str, str], Dict[Any, Document]] = {}
        self.validators: Dict[Tuple[str, str], Validator] = {}
        self.lock = threading.RLock()

    def create_collection(
        self, scope: str, collection: str, validator: Optional[Validator] = None
    ) -> None:
        """Create (or reset) a collection, optionally with a write validator."""
        with self.lock:
            key = (scope, collection)
            self.collections[key] = {}
            if validator is not None:
                self.validators[key] = validator
            else:
                self.validators.pop(key, None)

    def drop_collection(self, scope: str, collection: str) -> None:
        with self.lock:
            self.collections.pop((scope, collection), None)
            self.validators.pop((scope, collection), None)

    def find_one(self, scope: str, collection: str, filter: Document) -> Optional[Document]:
        with self.lock:
            match = self._first_match(scope, collection, filter)
            return copy.deepcopy(match) if match is not None else None

    def find(self, scope: str, collection: str, filter: Document) -> List[Document]:
        with self.lock:
            documents = self._collection(scope, collection).values()
            return [copy.deepcopy(d) for d in documents if _matches(d, filter)]

    def insert_one(self, scope: str, collection: str, document: Document) -> None:
        if "_id" not in document:
            raise StoreError("Document must have an _id")
        with self.lock:
            documents = self._collection(scope, collection)
            if document["_id"] in documents:
                raise StoreError(f"Duplicate key in {collection}: _id={document['_id']!r}")
            self._validate(scope, collection, document)
            documents[document["_id"]] = copy.deepcopy(document)

    def replace_one(
        self,
        scope: str,
        collection: str,
        doc_id: Any,
        document: Document,
        upsert: bool = False,
    ) -> bool:
        with self.lock:
            documents = self._collection(scope, collection)
            if doc_id not in documents and not upsert:
                return False
            replacement = copy.deepcopy(document)
            replacement["_id"] = doc_id
            self._validate(scope, collection, replacement)
            documents[doc_id] = replacement
            return True

    def find_one_and_update(
        self,
        scope: str,
        collection: str,
        filter: Document,
        update: Document,
        return_after: bool = False,
    ) -> Optional[Document]:
        with self.lock:
            current = self._first_match(scope, collection, filter)
            if current is None:
                return None

            updated = _apply_update(current, update)
            self._validate(scope, collection, updated)
            self._collection(scope, collection)[current["_id"]] = updated

            return copy.deepcopy(updated if return_after else current)

    def delete_one(self, scope: str, collection: str, doc_id: Any) -> bool:
        with self.lock:
            return self._collection(scope, collection).pop(doc_id, None) is not None

    def count(self, scope: str, collection: str) -> int:
        with self.lock:
            return len(self._collection(scope, collection))

    def _collection(self, scope: str, collection: str) -> Dict[Any, Document]:
        return self.collections.setdefault((scope, collection), {})

    def _first_match(self, scope: str, collection: str, filter: Document) -> Optional[Document]:
        documents = self._collection(scope, collection)
        if "_id" in filter and not isinstance(filter["_id"], dict):
            candidate = documents.get(filter["_id"])
            return candidate if candidate is not None and _matches(candidate, filter) else None
        for document in documents.values():
            if _matches(document, filter):
                return document
        return None

    def _validate(self, scope: str, collection: str, document: Document) -> None:
        validator = self.validators.get((scope, collection))
        if validator is not None and not validator(document):
            logger.info("Validation rejected write to %s.%s: _id=%r", scope, collection, document.get("_id"))
            raise DocumentValidationError(
                f"Document failed validation in {scope}.{collection}: _id={document.get('_id')!r}"
            )


def _matches(document: Document, filter: Document) -> bool:
    """Evaluate a Mongo-style filter against one document."""
    for field_name, condition in filter.items():
        value = document.get(field_name, _MISSING)

        if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            for operator, operand in condition.items():
                if not _check_operator(operator, value, operand):
                    return False
        elif condition is None:
            if value is not _MISSING and value is not None:
                return False
        elif value is _MISSING or value != condition:
            return False

    return True


def _check_operator(operator: str, value: Any, operand: Any) -> bool:
    if operator == "$exists":
        return (value is not _MISSING) == bool(operand)
    if operator in ("$lt", "$lte"):
        if value is _MISSING or value is None:
            return False
        try:
            return value < operand if operator == "$lt" else value <= operand
        except TypeError:
            return False
    raise StoreError(f"Unsupported filter operator: {operator}")


def _apply_update(document: Document, update: Document) -> Document:
    """Return a copy of ``document`` with ``$set``/``$unset`` applied."""
    updated = copy.deepcopy(document)
    for operator, fields in update.items():
        if operator == "$set":
            for key, value in fields.items():
                if key == "_id" and value != updated["_id"]:
                    raise StoreError("Cannot modify the immutable field _id")
                updated[key] = copy.deepcopy(value)
        elif operator == "$unset":
            for key in fields:
                updated.pop(key, None)
        else:
            raise StoreError(f"Unsupported update operator: {operator}")
    return updated
