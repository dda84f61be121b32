"""Transaction record models and enums."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional
from .participant import Participant


class TransactionStatus(Enum):
    """Enumeration of possible transaction states."""

    INITIAL = "initial"
    PENDING = "pending"
    APPLIED = "applied"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TransactionStatus.APPLIED, TransactionStatus.CANCELLED)


@dataclass
class TransactionRecord:
    """Persisted intent log entry for one multi-document transaction."""

    id: str
    status: TransactionStatus
    timestamp: float
    payload: Dict[str, Any] = field(default_factory=dict)
    participants: List[Participant] = field(default_factory=list)
    backup: Optional[List[Dict[str, Any]]] = None
    name: Optional[str] = None
    claimed: Optional[float] = None

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the stored document layout."""
        document = {
            "_id": self.id,
            "status": self.status.value,
            "ts": self.timestamp,
            "payload": self.payload,
            "name": self.name,
            "participants": [p.to_document() for p in self.participants],
            "claimed": self.claimed,
        }
        if self.backup is not None:
            document["backup"] = self.backup
        return document

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "TransactionRecord":
        """Deserialize from a stored document."""
        return cls(
            id=data["_id"],
            status=TransactionStatus(data["status"]),
            timestamp=data["ts"],
            payload=data.get("payload") or {},
            participants=[
                Participant.from_document(p) for p in data.get("participants", [])
            ],
            backup=data.get("backup"),
            name=data.get("name"),
            claimed=data.get("claimed"),
        )
