"""Participant identity model."""

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class Participant:
    """Identifies one document enrolled in a transaction."""

    scope: str
    collection: str
    doc_id: Any

    def to_document(self) -> Dict[str, Any]:
        return {"scope": self.scope, "collection": self.collection, "id": self.doc_id}

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "Participant":
        return cls(scope=data["scope"], collection=data["collection"], doc_id=data["id"])
