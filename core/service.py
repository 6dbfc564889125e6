"""Paste service: registry + blob store orchestration and reconciliation.

Every read or write of the credential registry happens under a single
``threading.Lock``. Blob bodies are streamed outside the lock; identifiers
whose bodies are still being written are tracked as *in flight* so that a
concurrent reconciliation pass never removes them.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO
from uuid import UUID
import threading

from loguru import logger

from core.exceptions import (
    BlobExistsError,
    ConfigurationError,
    PasteNotFoundError,
    UnauthorizedError,
)
from core.identifiers import canonical_identifier, new_identifier
from core.registry import State
from core.settings import Settings
from core.storage import BlobStore, Content
from core.storage.local import LocalBlobStore

Auth = tuple[str, str]

# Exclusive create retries with a fresh identifier on collision
_MAX_ID_ATTEMPTS = 3


@dataclass
class ReconcileReport:
    dropped_refs: list[tuple[str, str]] = field(default_factory=list)
    removed_blobs: list[str] = field(default_factory=list)
    swept_partials: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.dropped_refs or self.removed_blobs or self.swept_partials)


class PasteService:
    def __init__(
        self,
        data_dir: Path | None = None,
        state: State | None = None,
        *,
        blob_store: BlobStore | None = None,
    ) -> None:
        if blob_store is None:
            if data_dir is None:
                raise ConfigurationError("PasteService needs a data directory or a blob store")
            blob_store = LocalBlobStore(Path(data_dir))
        self.blobs = blob_store
        self._state = state if state is not None else State()
        self._lock = threading.Lock()
        self._in_flight: Counter[str] = Counter()
        self.reconcile()

    @classmethod
    def open(cls, settings: Settings) -> "PasteService":
        """Load the registry snapshot and open the local blob store from ``settings``."""
        state = State.load(settings.state.path)
        return cls(settings.storage.data_dir, state)

    # -- in-flight bookkeeping (caller holds the lock) --------------------

    def _hold(self, paste_id: str) -> None:
        self._in_flight[paste_id] += 1

    def _release(self, paste_id: str) -> None:
        self._in_flight[paste_id] -= 1
        if self._in_flight[paste_id] <= 0:
            del self._in_flight[paste_id]

    def _authenticate(self, username: str, password: str) -> None:
        with self._lock:
            if self._state.auth(username, password) is None:
                raise UnauthorizedError("Not authorized", {"username": username})

    def _write_new(self, content: Content) -> str:
        """Write ``content`` under a fresh identifier and return it, still held in flight."""
        for attempt in range(1, _MAX_ID_ATTEMPTS + 1):
            paste_id = new_identifier()
            with self._lock:
                if paste_id in self._in_flight:
                    continue
                self._hold(paste_id)
            try:
                self.blobs.create_exclusive(paste_id, content)
            except BlobExistsError:
                with self._lock:
                    self._release(paste_id)
                logger.warning("Identifier collision on {id} (attempt {attempt})", id=paste_id, attempt=attempt)
                continue
            except Exception:
                with self._lock:
                    self._release(paste_id)
                raise
            return paste_id
        raise BlobExistsError("Could not allocate a unique paste identifier")

    def create(self, content: Content, auth: Auth | None = None) -> str:
        if auth is not None:
            self._authenticate(*auth)

        paste_id = self._write_new(content)

        with self._lock:
            self._release(paste_id)
            if auth is None:
                return paste_id
            user = self._state.auth_mut(*auth)
            if user is not None:
                user.paste_ids.append(paste_id)
                return paste_id

        # Credentials changed while the body was being written
        logger.warning("Rolling back paste {id}: credentials for {user} no longer match", id=paste_id, user=auth[0])
        try:
            self.blobs.delete(paste_id)
        except PasteNotFoundError:
            pass
        raise UnauthorizedError("Not authorized", {"username": auth[0]})

    def read(self, paste_id: str | UUID) -> BinaryIO:
        return self.blobs.open_for_read(canonical_identifier(paste_id))

    def replace(self, paste_id: str | UUID, content: Content, auth: Auth | None = None) -> None:
        paste_id = canonical_identifier(paste_id)
        with self._lock:
            if auth is not None:
                user = self._state.auth(*auth)
                if user is None:
                    raise UnauthorizedError("Not authorized", {"username": auth[0]})
                if not user.owns(paste_id):
                    raise PasteNotFoundError("Paste not found", {"id": paste_id})
            self._hold(paste_id)
        try:
            self.blobs.overwrite(paste_id, content)
        finally:
            with self._lock:
                self._release(paste_id)

    def delete(self, paste_id: str | UUID, username: str, password: str) -> None:
        paste_id = canonical_identifier(paste_id)
        with self._lock:
            user = self._state.auth_mut(username, password)
            if user is None:
                raise UnauthorizedError("Not authorized", {"username": username})
            if not user.owns(paste_id):
                raise PasteNotFoundError("Paste not found", {"id": paste_id})
            try:
                self.blobs.delete(paste_id)
            except PasteNotFoundError:
                logger.warning("Paste {id} owned by {user} was already missing on disk", id=paste_id, user=username)
            user.paste_ids.remove(paste_id)
            self._reconcile_locked()

    def register_user(self, username: str, password: str) -> None:
        with self._lock:
            self._state.create(username, password)
        logger.info("Registered user {user}", user=username)

    def list(self, username: str, password: str) -> list[str]:
        with self._lock:
            user = self._state.auth(username, password)
            if user is None:
                raise UnauthorizedError("Not authorized", {"username": username})
            return list(user.paste_ids)

    def dump_state(self, path: Path) -> None:
        with self._lock:
            self._state.dump(path)

    def reconcile(self) -> ReconcileReport:
        with self._lock:
            return self._reconcile_locked()

    def _reconcile_locked(self) -> ReconcileReport:
        report = ReconcileReport()
        on_disk = self.blobs.list_all()

        # Drop references whose blob is gone; an identifier may be owned only once
        surviving: set[str] = set()
        for user in self._state.users_mut():
            kept: list[str] = []
            for paste_id in user.paste_ids:
                if paste_id in on_disk and paste_id not in surviving:
                    kept.append(paste_id)
                    surviving.add(paste_id)
                else:
                    report.dropped_refs.append((user.username, paste_id))
            user.paste_ids[:] = kept

        # Unclaimed blobs, anonymous pastes included, are removed
        for paste_id in sorted(on_disk - surviving - set(self._in_flight)):
            try:
                self.blobs.delete(paste_id)
            except PasteNotFoundError:
                continue
            report.removed_blobs.append(paste_id)

        report.swept_partials = self.blobs.sweep_partials(keep=set(self._in_flight))

        if report.changed:
            logger.info(
                "Reconciliation dropped {refs} reference(s), removed {blobs} blob(s), swept {partials} partial file(s)",
                refs=len(report.dropped_refs),
                blobs=len(report.removed_blobs),
                partials=report.swept_partials,
            )
            for username, paste_id in report.dropped_refs:
                logger.debug("Dropped reference {id} from {user}", id=paste_id, user=username)
        return report


__all__ = ["PasteService", "ReconcileReport", "Auth"]
