"""MongoDB-backed document store."""

import logging
from typing import Any, List, Optional

from pymongo import MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, OperationFailure, PyMongoError

from .exceptions.transaction_exceptions import StoreError, DocumentValidationError
from .store import DocumentStore, Document

logger = logging.getLogger(__name__)

# Server error code for "Document failed validation"
DOCUMENT_VALIDATION_FAILURE = 121


class MongoDocumentStore(DocumentStore):
    """
    DocumentStore over a pymongo client.

    The scope is the database name. ``find_one_and_update`` maps directly onto
    the server's findAndModify, which is atomic per document. Driver errors
    are re-raised as StoreError so the coordinator can classify them.
    """

    def __init__(self, client: MongoClient):
        self.client = client

    def collection(self, scope: str, collection: str):
        return self.client[scope][collection]

    def find_one(self, scope: str, collection: str, filter: Document) -> Optional[Document]:
        try:
            return self.collection(scope, collection).find_one(filter)
        except PyMongoError as e:
            raise _wrap(e, "find_one", collection) from e

    def find(self, scope: str, collection: str, filter: Document) -> List[Document]:
        try:
            return list(self.collection(scope, collection).find(filter))
        except PyMongoError as e:
            raise _wrap(e, "find", collection) from e

    def insert_one(self, scope: str, collection: str, document: Document) -> None:
        try:
            self.collection(scope, collection).insert_one(document)
        except PyMongoError as e:
            raise _wrap(e, "insert_one", collection) from e

    def replace_one(
        self,
        scope: str,
        collection: str,
        doc_id: Any,
        document: Document,
        upsert: bool = False,
    ) -> bool:
        try:
            result = self.collection(scope, collection).replace_one(
                {"_id": doc_id}, document, upsert=upsert
            )
        except PyMongoError as e:
            raise _wrap(e, "replace_one", collection) from e
        return result.matched_count > 0 or result.upserted_id is not None

    def find_one_and_update(
        self,
        scope: str,
        collection: str,
        filter: Document,
        update: Document,
        return_after: bool = False,
    ) -> Optional[Document]:
        return_document = ReturnDocument.AFTER if return_after else ReturnDocument.BEFORE
        try:
            return self.collection(scope, collection).find_one_and_update(
                filter, update, return_document=return_document
            )
        except PyMongoError as e:
            raise _wrap(e, "find_one_and_update", collection) from e

    def delete_one(self, scope: str, collection: str, doc_id: Any) -> bool:
        try:
            result = self.collection(scope, collection).delete_one({"_id": doc_id})
        except PyMongoError as e:
            raise _wrap(e, "delete_one", collection) from e
        return result.deleted_count > 0


def _wrap(error: PyMongoError, operation: str, collection: str) -> StoreError:
    logger.warning("MongoDB %s on %s failed: %s", operation, collection, error)
    if isinstance(error, OperationFailure) and error.code == DOCUMENT_VALIDATION_FAILURE:
        return DocumentValidationError(f"{operation} on {collection} rejected: {error}")
    if isinstance(error, DuplicateKeyError):
        return StoreError(f"Duplicate key in {collection}: {error}")
    return StoreError(f"{operation} on {collection} failed: {error}")
