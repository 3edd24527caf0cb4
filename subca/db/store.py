"""Entity store with single-writer transactions."""

import logging
import os
import threading
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import yaml
from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError

from subca.errors import AlreadyRevokedError, ConflictError, PersistenceError, SerialCollisionError
from subca.models.ca import CAStatus
from subca.models.certificate import CertificateStatus
from subca.services.yaml_service import YAMLService

from .queries import MODELS, StoreReader
from .unit_of_work import UnitOfWork

logger = logging.getLogger("subca")

Key = Tuple[str, str]


class Store(StoreReader, ABC):
    """
    Committed entity state plus the single writer lock.

    Readers get deep copies of committed entities and never block on an open
    unit of work. All writes go through :meth:`unit_of_work`.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, BaseModel]] = {name: {} for name in MODELS}
        self._state_lock = threading.RLock()
        self._write_lock = threading.Lock()

    def unit_of_work(self) -> UnitOfWork:
        """Open a transaction. Use as a context manager."""
        return UnitOfWork(self)

    def _get(self, collection: str, entity_id: str) -> Optional[BaseModel]:
        with self._state_lock:
            entity = self._data[collection].get(entity_id)
            return entity.model_copy(deep=True) if entity is not None else None

    def _all(self, collection: str) -> List[BaseModel]:
        with self._state_lock:
            return [entity.model_copy(deep=True) for entity in self._data[collection].values()]

    def _commit(self, upserts: Dict[Key, BaseModel], deletes: Set[Key], view: StoreReader) -> None:
        """Check constraints against the staged view, write, then publish."""
        if not upserts and not deletes:
            return
        self._check_constraints(upserts, view)
        self._persist(upserts, deletes)
        with self._state_lock:
            for (collection, entity_id), entity in upserts.items():
                self._data[collection][entity_id] = entity
            for collection, entity_id in deletes:
                self._data[collection].pop(entity_id, None)

    def _check_constraints(self, upserts: Dict[Key, BaseModel], view: StoreReader) -> None:
        for (collection, entity_id), entity in upserts.items():
            inserted = entity_id not in self._data[collection]

            if collection == "certificates":
                clash = [
                    c
                    for c in view._all("certificates")
                    if c.ca_id == entity.ca_id and c.serial_number == entity.serial_number and c.id != entity.id
                ]
                ca = view.get_ca(entity.ca_id)
                if clash or (ca is not None and entity.serial_number in ca.ocsp_signer_serials):
                    raise SerialCollisionError(f"Serial {entity.serial_number} already used by CA {entity.ca_id}")

                if (
                    inserted
                    and ca is not None
                    and ca.enforce_unique_common_name
                    and entity.effective_status() == CertificateStatus.ACTIVE
                    and entity.superseded_by is None
                ):
                    others = [c for c in view.find_active_by_common_name(entity.ca_id, entity.common_name) if c.id != entity.id]
                    if others:
                        raise ConflictError(
                            f"An active certificate for '{entity.common_name}' already exists: {others[0].id}"
                        )

            elif collection == "revocations":
                clash = [
                    r for r in view._all("revocations") if r.certificate_id == entity.certificate_id and r.id != entity.id
                ]
                if clash:
                    raise AlreadyRevokedError(f"Certificate already revoked: {entity.certificate_id}")

            elif collection == "cas":
                active = [ca for ca in view._all("cas") if ca.status == CAStatus.ACTIVE]
                if len(active) > 1:
                    raise ConflictError("Another CA is already ACTIVE")
                signer_serials = set(entity.ocsp_signer_serials)
                if len(signer_serials) != len(entity.ocsp_signer_serials) or any(
                    c.serial_number in signer_serials for c in view.list_certificates(ca_id=entity.id)
                ):
                    raise SerialCollisionError(f"OCSP signer serial already used by CA {entity.id}")

            elif collection == "crls" and inserted:
                previous = [c.number for c in self._data["crls"].values() if c.ca_id == entity.ca_id]
                if previous and entity.number <= max(previous):
                    raise ConflictError(f"CRL number {entity.number} does not increase past {max(previous)}")

    @abstractmethod
    def _persist(self, upserts: Dict[Key, BaseModel], deletes: Set[Key]) -> None:
        """Durably write a commit or raise PersistenceError leaving nothing written."""


class MemoryStore(Store):
    """Store without durable backing."""

    def _persist(self, upserts: Dict[Key, BaseModel], deletes: Set[Key]) -> None:
        return None


class YAMLStore(Store):
    """
    Store persisting one YAML document per entity.

    Layout: ``<data_dir>/<collection>/<id>.yaml``. A commit writes every
    document to a temp file first and then swaps them in with ``os.replace``;
    if any swap fails the previous documents are restored.
    """

    def __init__(self, data_dir: Path):
        super().__init__()
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._load()

    def _path(self, collection: str, entity_id: str) -> Path:
        return self.data_dir / collection / f"{entity_id}.yaml"

    def _load(self) -> None:
        count = 0
        for collection, model in MODELS.items():
            directory = self.data_dir / collection
            if not directory.is_dir():
                continue
            for file_path in sorted(directory.glob("*.yaml")):
                try:
                    entity = YAMLService.load_model(file_path, model)
                except (OSError, yaml.YAMLError, ModelValidationError) as e:
                    raise PersistenceError(f"Cannot load {file_path}: {e}") from e
                self._data[collection][entity.id] = entity
                count += 1
        logger.info(f"Loaded {count} entities from {self.data_dir}")

    def _persist(self, upserts: Dict[Key, BaseModel], deletes: Set[Key]) -> None:
        staged: List[Tuple[Path, Path]] = []
        applied: List[Tuple[Path, Optional[bytes]]] = []
        try:
            for (collection, entity_id), entity in upserts.items():
                path = self._path(collection, entity_id)
                tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
                staged.append((tmp, path))
                YAMLService.save_model(tmp, entity)

            for tmp, path in staged:
                previous = path.read_bytes() if path.exists() else None
                os.replace(tmp, path)
                applied.append((path, previous))

            for collection, entity_id in deletes:
                path = self._path(collection, entity_id)
                if path.exists():
                    previous = path.read_bytes()
                    path.unlink()
                    applied.append((path, previous))
        except (OSError, yaml.YAMLError) as e:
            self._restore(applied)
            for tmp, _ in staged:
                tmp.unlink(missing_ok=True)
            logger.error(f"Commit failed, restored {len(applied)} document(s): {e}")
            raise PersistenceError(f"Failed to persist changes: {e}") from e

    def _restore(self, applied: List[Tuple[Path, Optional[bytes]]]) -> None:
        for path, previous in reversed(applied):
            try:
                if previous is None:
                    path.unlink(missing_ok=True)
                else:
                    path.write_bytes(previous)
            except OSError as e:
                logger.error(f"Could not restore {path}: {e}")
