from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Collection, Iterator

from loguru import logger

from core.exceptions import BlobExistsError, PasteboxError, PasteNotFoundError, StorageError
from core.identifiers import canonical_identifier, is_canonical_identifier
from core.storage import Content

CHUNK_SIZE = 64 * 1024
PARTIAL_SUFFIX = ".partial"


def _iter_chunks(content: Content) -> Iterator[bytes]:
    read = getattr(content, "read", None)
    if read is None:
        yield from content  # type: ignore[misc]
        return
    while True:
        chunk = read(CHUNK_SIZE)
        if not chunk:
            break
        yield chunk


class LocalBlobStore:
    """One file per paste, named by its identifier, under ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, paste_id: str) -> Path:
        return self.root / canonical_identifier(paste_id)

    def _copy(self, content: Content, fp: BinaryIO) -> None:
        for chunk in _iter_chunks(content):
            fp.write(chunk)
        fp.flush()

    def create_exclusive(self, paste_id: str, content: Content) -> None:
        path = self._path(paste_id)
        try:
            fp = path.open("xb")
        except FileExistsError as exc:
            raise BlobExistsError("Paste already exists", {"id": path.name}) from exc
        except OSError as exc:
            raise StorageError(f"Could not create paste: {exc}", {"id": path.name}) from exc
        try:
            with fp:
                self._copy(content, fp)
        except Exception as exc:
            path.unlink(missing_ok=True)
            logger.warning("Removed partial paste {id} after failed write", id=path.name)
            if isinstance(exc, PasteboxError):
                raise
            raise StorageError(f"Could not write paste: {exc}", {"id": path.name}) from exc

    def open_for_read(self, paste_id: str) -> BinaryIO:
        path = self._path(paste_id)
        try:
            return path.open("rb")
        except FileNotFoundError as exc:
            raise PasteNotFoundError("Paste not found", {"id": path.name}) from exc
        except OSError as exc:
            raise StorageError(f"Could not open paste: {exc}", {"id": path.name}) from exc

    def overwrite(self, paste_id: str, content: Content) -> None:
        path = self._path(paste_id)
        if not path.is_file():
            raise PasteNotFoundError("Paste not found", {"id": path.name})
        # Each writer streams into its own <id>.<random>.partial file
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f"{path.name}.", suffix=PARTIAL_SUFFIX, dir=self.root)
        except OSError as exc:
            raise StorageError(f"Could not replace paste: {exc}", {"id": path.name}) from exc
        partial = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as fp:
                self._copy(content, fp)
            os.replace(partial, path)
        except Exception as exc:
            partial.unlink(missing_ok=True)
            if isinstance(exc, PasteboxError):
                raise
            raise StorageError(f"Could not replace paste: {exc}", {"id": path.name}) from exc

    def delete(self, paste_id: str) -> None:
        path = self._path(paste_id)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise PasteNotFoundError("Paste not found", {"id": path.name}) from exc
        except OSError as exc:
            raise StorageError(f"Could not delete paste: {exc}", {"id": path.name}) from exc

    def exists(self, paste_id: str) -> bool:
        return self._path(paste_id).is_file()

    def list_all(self) -> set[str]:
        try:
            with os.scandir(self.root) as entries:
                return {
                    entry.name
                    for entry in entries
                    if entry.is_file() and is_canonical_identifier(entry.name)
                }
        except OSError as exc:
            raise StorageError(f"Could not list pastes: {exc}", {"root": str(self.root)}) from exc

    def sweep_partials(self, keep: Collection[str] = ()) -> int:
        """Remove leftover ``*.partial`` files, except those whose paste is in ``keep``."""
        removed = 0
        for path in self.root.glob(f"*{PARTIAL_SUFFIX}"):
            if path.name.split(".", 1)[0] in keep:
                continue
            path.unlink(missing_ok=True)
            removed += 1
        return removed


__all__ = ["LocalBlobStore", "CHUNK_SIZE"]
