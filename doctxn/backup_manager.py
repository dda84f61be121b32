"""Backup snapshots for rollback."""

import copy
import logging
from typing import Dict, Any, List, Sequence

from .document_ref import DocumentRef
from .exceptions.transaction_exceptions import TransactionStateError

logger = logging.getLogger(__name__)


def clone_document(document: Any) -> Any:
    """Structural copy of nested mappings and sequences."""
    if isinstance(document, dict):
        return {key: clone_document(value) for key, value in document.items()}
    if isinstance(document, (list, tuple)):
        return [clone_document(value) for value in document]
    return copy.deepcopy(document)


class BackupManager:
    """Creates and replays the pre-transaction backup of all participants."""

    def create_backup(self, refs: Sequence[DocumentRef]) -> List[Dict[str, Any]]:
        """Clone every loaded participant, index-aligned with ``refs``."""
        backup = []
        for ref in refs:
            if not ref.is_loaded:
                raise TransactionStateError(
                    f"Cannot back up {ref!r} before it has been loaded"
                )
            backup.append(clone_document(ref.document))

        logger.debug("Backup created for %d participant(s)", len(backup))
        return backup

    def restore_backup(
        self, refs: Sequence[DocumentRef], backup: Sequence[Dict[str, Any]]
    ) -> None:
        """Reset every participant to its backup snapshot and mark it dirty."""
        if len(backup) != len(refs):
            raise TransactionStateError(
                f"Backup has {len(backup)} entries for {len(refs)} participants"
            )

        for ref, snapshot in zip(refs, backup):
            ref.replace_snapshot(clone_document(snapshot))
