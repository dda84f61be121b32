from typing import Any, Callable, List, Optional

from doctxn.store import DocumentStore, Document
from .chaos_config import ChaosConfig


class ChaosStore(DocumentStore):
    """
    Proxy store that injects chaos into document store operations.

    Every call goes through ChaosConfig, which may raise a ChaosException
    (a StoreError) or sleep before forwarding to the wrapped store. The
    context of each injection is the operation name, e.g. "replace_one".
    """

    def __init__(self, store: DocumentStore, config: ChaosConfig):
        self.store = store
        self.chaos = config

    def _with_chaos(self, operation: Callable, *args, context: str, **kwargs) -> Any:
        self.chaos.maybe_fail(context)
        self.chaos.maybe_delay(context)
        return operation(*args, **kwargs)

    def find_one(self, scope: str, collection: str, filter: Document) -> Optional[Document]:
        return self._with_chaos(
            self.store.find_one, scope, collection, filter, context="find_one"
        )

    def find(self, scope: str, collection: str, filter: Document) -> List[Document]:
        return self._with_chaos(self.store.find, scope, collection, filter, context="find")

    def insert_one(self, scope: str, collection: str, document: Document) -> None:
        return self._with_chaos(
            self.store.insert_one, scope, collection, document, context="insert_one"
        )

    def replace_one(
        self,
        scope: str,
        collection: str,
        doc_id: Any,
        document: Document,
        upsert: bool = False,
    ) -> bool:
        return self._with_chaos(
            self.store.replace_one, scope, collection, doc_id, document,
            upsert=upsert, context="replace_one",
        )

    def find_one_and_update(
        self,
        scope: str,
        collection: str,
        filter: Document,
        update: Document,
        return_after: bool = False,
    ) -> Optional[Document]:
        return self._with_chaos(
            self.store.find_one_and_update, scope, collection, filter, update,
            return_after=return_after, context="find_one_and_update",
        )

    def delete_one(self, scope: str, collection: str, doc_id: Any) -> bool:
        return self._with_chaos(
            self.store.delete_one, scope, collection, doc_id, context="delete_one"
        )

    def print_chaos_metrics(self):
        return self.chaos.print_metrics()
