"""Lazily loaded handle to one participant document."""

import logging
from typing import Dict, Any, Optional

from .exceptions.transaction_exceptions import DocumentNotFoundError
from .models.participant import Participant
from .store import DocumentStore

logger = logging.getLogger(__name__)


class DocumentRef:
    """
    Reference to one document enrolled in a transaction.

    The snapshot is loaded at most once; after that the cached copy is the
    only one caller logic mutates. Call ``mark_dirty()`` after changing it so
    the coordinator writes it back.
    """

    def __init__(self, scope: str, collection: str, doc_id: Any):
        self._participant = Participant(scope, collection, doc_id)
        self._document: Optional[Dict[str, Any]] = None
        self._dirty = False

    @classmethod
    def for_participant(cls, participant: Participant) -> "DocumentRef":
        return cls(participant.scope, participant.collection, participant.doc_id)

    @property
    def participant(self) -> Participant:
        return self._participant

    @property
    def scope(self) -> str:
        return self._participant.scope

    @property
    def collection(self) -> str:
        return self._participant.collection

    @property
    def doc_id(self) -> Any:
        return self._participant.doc_id

    @property
    def document(self) -> Optional[Dict[str, Any]]:
        """The cached snapshot, or None before the first load."""
        return self._document

    @property
    def is_loaded(self) -> bool:
        return self._document is not None

    def set_document(self, document: Dict[str, Any]) -> None:
        """Cache a snapshot obtained elsewhere (the locked read)."""
        self._document = document

    def load(self, store: DocumentStore) -> Dict[str, Any]:
        """Return the cached snapshot, reading it from the store on first use."""
        if self._document is None:
            document = store.find_one(self.scope, self.collection, {"_id": self.doc_id})
            if document is None:
                raise DocumentNotFoundError(self.collection, self.doc_id)
            self._document = document
        return self._document

    def mark_dirty(self) -> None:
        self._dirty = True

    def is_dirty(self) -> bool:
        return self._dirty

    def replace_snapshot(self, document: Dict[str, Any]) -> None:
        """Force the snapshot to ``document`` and mark it for write-back."""
        self._document = document
        self._dirty = True

    def persist(self, store: DocumentStore) -> bool:
        """Write the snapshot back if dirty. Returns True when a write happened."""
        if not self._dirty or self._document is None:
            return False
        if not store.replace_one(self.scope, self.collection, self.doc_id, self._document):
            raise DocumentNotFoundError(self.collection, self.doc_id)
        self._dirty = False
        logger.debug("Persisted %s.%s _id=%r", self.scope, self.collection, self.doc_id)
        return True

    def __repr__(self) -> str:
        return (
            f"DocumentRef({self.scope!r}, {self.collection!r}, {self.doc_id!r}, "
            f"dirty={self._dirty})"
        )
