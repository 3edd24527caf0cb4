"""Unit of Work: atomic multi-entity writes under the store's writer lock.

Usage::

    with store.unit_of_work() as uow:
        uow.add(certificate)
        uow.add(audit_row)
        uow.after_commit(lambda: sink.emit(audit_row))
        # COMMIT on clean exit; ROLLBACK on exception

Reads made through the unit see its own staged changes layered over the
committed state. Nothing is visible to other readers until commit.
"""

import logging
from typing import Callable, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel

from subca.errors import ConflictError, NotFoundError

from .queries import StoreReader, collection_for

logger = logging.getLogger("subca")

Key = Tuple[str, str]


class UnitOfWork(StoreReader):
    """Transaction-scoped staging area for one mutating operation."""

    def __init__(self, store):
        self._store = store
        self._upserts: Dict[Key, BaseModel] = {}
        self._deletes: Set[Key] = set()
        self._hooks: List[Callable[[], None]] = []
        self._open = False

    # -- context manager -----------------------------------------------------

    def __enter__(self) -> "UnitOfWork":
        self._store._write_lock.acquire()
        self._open = True
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        committed = False
        try:
            if exc_type is None:
                self._store._commit(self._upserts, self._deletes, self)
                committed = True
            else:
                logger.debug(f"Rolling back unit of work: {exc_type.__name__}")
        finally:
            self._open = False
            self._store._write_lock.release()

        if committed:
            self._run_hooks()
        return False

    # -- staging -------------------------------------------------------------

    def add(self, entity: BaseModel) -> BaseModel:
        """Stage a new entity."""
        key = (collection_for(entity), entity.id)
        self._ensure_open()
        if self._get(*key) is not None:
            raise ConflictError(f"{key[0]} entry already exists: {entity.id}")
        self._deletes.discard(key)
        self._upserts[key] = entity.model_copy(deep=True)
        return entity

    def update(self, entity: BaseModel) -> BaseModel:
        """Stage a replacement for an existing entity."""
        key = (collection_for(entity), entity.id)
        self._ensure_open()
        if self._get(*key) is None:
            raise NotFoundError(f"{key[0]} entry not found: {entity.id}")
        self._upserts[key] = entity.model_copy(deep=True)
        return entity

    def delete(self, collection: str, entity_id: str) -> None:
        """Stage removal of an entity."""
        self._ensure_open()
        key = (collection, entity_id)
        self._upserts.pop(key, None)
        self._deletes.add(key)

    def after_commit(self, hook: Callable[[], None]) -> None:
        """Run ``hook`` once the unit has committed. Skipped on rollback."""
        self._hooks.append(hook)

    # -- reads ---------------------------------------------------------------

    def _get(self, collection: str, entity_id: str) -> Optional[BaseModel]:
        key = (collection, entity_id)
        if key in self._deletes:
            return None
        if key in self._upserts:
            return self._upserts[key].model_copy(deep=True)
        return self._store._get(collection, entity_id)

    def _all(self, collection: str) -> List[BaseModel]:
        merged = {entity.id: entity for entity in self._store._all(collection)}
        for (name, entity_id), entity in self._upserts.items():
            if name == collection:
                merged[entity_id] = entity.model_copy(deep=True)
        for name, entity_id in self._deletes:
            if name == collection:
                merged.pop(entity_id, None)
        return list(merged.values())

    # -- internals -----------------------------------------------------------

    def _ensure_open(self) -> None:
        if not self._open:
            raise RuntimeError("UnitOfWork must be used as a context manager")

    def _run_hooks(self) -> None:
        for hook in self._hooks:
            try:
                hook()
            except Exception:
                logger.exception("Post-commit hook failed")
