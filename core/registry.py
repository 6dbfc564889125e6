"""In-memory credential registry with JSON snapshots."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

from loguru import logger

from core.exceptions import CorruptStateError, UserAlreadyExistsError, ValidationError

SNAPSHOT_VERSION = 1


@dataclass
class User:
    username: str
    password: str
    paste_ids: list[str] = field(default_factory=list)

    def owns(self, paste_id: str) -> bool:
        return paste_id in self.paste_ids


class State:
    """Username -> User mapping.

    Not thread-safe on its own; the paste service serialises every access
    behind a single lock.
    """

    def __init__(self, users: dict[str, User] | None = None) -> None:
        self._users: dict[str, User] = dict(users or {})

    def __len__(self) -> int:
        return len(self._users)

    def __contains__(self, username: object) -> bool:
        return username in self._users

    def auth(self, username: str, password: str) -> User | None:
        """Return the user when ``password`` matches exactly, otherwise None."""
        user = self._users.get(username)
        if user is None or user.password != password:
            return None
        return user

    def auth_mut(self, username: str, password: str) -> User | None:
        """Same matching rule as :meth:`auth`; the caller intends to mutate the result."""
        return self.auth(username, password)

    def create(self, username: str, password: str) -> User:
        if not username:
            raise ValidationError("Username must not be empty")
        if username in self._users:
            raise UserAlreadyExistsError("User already registered", {"username": username})
        user = User(username=username, password=password)
        self._users[username] = user
        return user

    def users(self) -> list[User]:
        return list(self._users.values())

    def users_mut(self) -> Iterator[User]:
        return iter(self._users.values())

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "users": [
                {
                    "username": user.username,
                    "password": user.password,
                    "paste_ids": list(user.paste_ids),
                }
                for user in self._users.values()
            ],
        }

    @classmethod
    def from_payload(cls, payload: Any) -> "State":
        if isinstance(payload, dict):
            entries = payload.get("users")
        else:
            entries = payload
        if not isinstance(entries, list):
            raise ValueError("snapshot must contain a list of users")
        users: dict[str, User] = {}
        for entry in entries:
            if not isinstance(entry, dict):
                raise ValueError("user entry must be an object")
            username = entry["username"]
            password = entry["password"]
            paste_ids = entry.get("paste_ids", [])
            if not isinstance(username, str) or not isinstance(password, str):
                raise ValueError("username and password must be strings")
            if not isinstance(paste_ids, list) or not all(isinstance(p, str) for p in paste_ids):
                raise ValueError("paste_ids must be a list of strings")
            if username in users:
                raise ValueError(f"duplicate user {username!r}")
            users[username] = User(username=username, password=password, paste_ids=list(paste_ids))
        return cls(users)

    def dump(self, path: Path) -> None:
        """Write the snapshot atomically: temp file in the same directory, then rename."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = json.dumps(self.to_payload(), indent=2)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fp:
                fp.write(data)
                fp.flush()
                os.fsync(fp.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Registry snapshot written to {path} ({count} users)", path=path, count=len(self))

    @classmethod
    def load(cls, path: Path) -> "State":
        """Load a snapshot; a missing file yields an empty registry.

        Raises:
            CorruptStateError: If the file exists but cannot be parsed.
        """
        path = Path(path)
        if not path.exists():
            logger.info("No registry snapshot at {path}, starting empty", path=path)
            return cls()
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            state = cls.from_payload(payload)
        except (OSError, UnicodeDecodeError, ValueError, KeyError, TypeError) as exc:
            raise CorruptStateError(
                f"Registry snapshot is unreadable: {exc}",
                {"path": str(path)},
            ) from exc
        logger.info("Loaded registry snapshot from {path} ({count} users)", path=path, count=len(state))
        return state


__all__ = ["User", "State", "SNAPSHOT_VERSION"]
