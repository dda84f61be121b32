"""Value transfer between two documents, the canonical multi-document update."""

import logging
import numbers
from typing import Any, Dict, List

from .document_ref import DocumentRef
from .store import DocumentStore
from .transaction import Transaction

logger = logging.getLogger(__name__)

TRANSFER = "transfer"


def _numeric(ref: DocumentRef, field: str):
    value = ref.document.get(field)
    if isinstance(value, bool) or not isinstance(value, numbers.Number):
        raise ValueError(f"Field {field!r} of _id={ref.doc_id!r} is not numeric: {value!r}")
    return value


def apply_transfer(documents: List[DocumentRef], payload: Dict[str, Any]) -> None:
    """
    Move ``payload["amount"]`` from the first document to the second.

    Payload keys:
        amount: Quantity to move
        field: Numeric field to update (default "value")
        min_balance: Optional floor the source may not drop below

    Raises:
        ValueError: If a field is not numeric or the floor would be crossed
    """
    if len(documents) != 2:
        raise ValueError(f"A transfer needs exactly 2 documents, got {len(documents)}")

    source, target = documents
    field = payload.get("field", "value")
    amount = payload["amount"]

    source_value = _numeric(source, field)
    target_value = _numeric(target, field)

    min_balance = payload.get("min_balance")
    if min_balance is not None and source_value - amount < min_balance:
        raise ValueError(
            f"Insufficient balance on _id={source.doc_id!r}. "
            f"Available: {source_value}, Requested: {amount}"
        )

    source.document[field] = source_value - amount
    source.mark_dirty()
    target.document[field] = target_value + amount
    target.mark_dirty()

    logger.debug(
        "Transfer %s of %s: %r %s -> %s, %r %s -> %s",
        field, amount,
        source.doc_id, source_value, source.document[field],
        target.doc_id, target_value, target.document[field],
    )


def create_transfer(
    store: DocumentStore,
    scope: str,
    collection: str,
    source_id: Any,
    target_id: Any,
    amount,
    field: str = "value",
    **kwargs,
) -> Transaction:
    """Build a transfer transaction between two documents of one collection."""
    payload = {"amount": amount, "field": field}
    if "min_balance" in kwargs:
        payload["min_balance"] = kwargs.pop("min_balance")

    transaction = Transaction(store, apply_transfer, payload=payload, name=TRANSFER, **kwargs)
    transaction.add_document(scope, collection, source_id)
    transaction.add_document(scope, collection, target_id)
    return transaction


UNITS = {TRANSFER: apply_transfer}
