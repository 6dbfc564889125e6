"""Paste identifier generation and validation."""

from __future__ import annotations

import re
from uuid import UUID, uuid4

from core.exceptions import InvalidIdentifierError

# Canonical UUID text: lowercase hex, 8-4-4-4-12
_CANONICAL_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")


def new_identifier() -> str:
    return str(uuid4())


def is_canonical_identifier(value: str) -> bool:
    return bool(_CANONICAL_PATTERN.match(value))


def canonical_identifier(value: str | UUID) -> str:
    """Normalise ``value`` to the canonical lowercase hyphenated form.

    Raises:
        InvalidIdentifierError: If ``value`` does not parse as a UUID.
    """
    if isinstance(value, UUID):
        return str(value)
    try:
        return str(UUID(str(value).strip()))
    except (TypeError, ValueError) as exc:
        raise InvalidIdentifierError(
            "Invalid paste identifier",
            {"identifier": repr(value)[:50]},
        ) from exc


__all__ = ["new_identifier", "is_canonical_identifier", "canonical_identifier"]
