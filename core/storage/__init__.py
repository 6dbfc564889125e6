"""Blob storage abstraction (local filesystem)."""

from __future__ import annotations

from typing import BinaryIO, Collection, Iterable, Protocol, Union

# A binary file-like object or an iterable of byte chunks
Content = Union[BinaryIO, Iterable[bytes]]


class BlobStore(Protocol):
    def create_exclusive(self, paste_id: str, content: Content) -> None:
        ...

    def open_for_read(self, paste_id: str) -> BinaryIO:
        ...

    def overwrite(self, paste_id: str, content: Content) -> None:
        ...

    def delete(self, paste_id: str) -> None:
        ...

    def exists(self, paste_id: str) -> bool:
        ...

    def list_all(self) -> set[str]:
        ...

    def sweep_partials(self, keep: Collection[str] = ()) -> int:
        ...


__all__ = ["BlobStore", "Content"]
