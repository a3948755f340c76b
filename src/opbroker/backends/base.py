"""
Base class for secret backends.

A backend fetches the fields or the document of one vault item. Two
implementations exist, one talking to a 1Password Connect server and one
shelling out to the local ``op`` CLI. The broker picks one at construction and
never switches.

## Implementation Requirements

Subclasses implement:

- `_load_fields`: raw ``{label: value}`` mapping of an item, ``{}`` when the
  item does not exist
- `fetch_document`: raw document content, ``""`` when it does not exist
- `fetch_one_time_password`: current TOTP code of an item

Failures other than "not found" raise :class:`~opbroker.errors.BackendError`
with the operation and identifiers in the message.

Field values are normalized by :meth:`SecretBackend.fetch_fields` so both
implementations return identical values for identical items.
"""

import re
from abc import ABC, abstractmethod

# Field labels that arrive under a different name than the one callers use.
FIELD_ALIASES = {
    "notesPlain": "notes",
}

ITEM_ID_PATTERN = re.compile(r"^[a-z0-9]{26}$")


def normalize_value(value: str) -> str:
    """Trim a field value and turn literal ``\\n`` sequences into newlines."""
    return value.strip().replace("\\n", "\n")


def is_item_id(identifier: str) -> bool:
    """Whether ``identifier`` has the shape of a 1Password item id."""
    return ITEM_ID_PATTERN.match(identifier) is not None


class SecretBackend(ABC):
    """Strategy used by the broker to reach the vault."""

    name: str = "base"
    #: Whether calls need an authenticated CLI session first.
    requires_session: bool = False

    async def fetch_fields(self, vault: str, item: str) -> dict[str, str]:
        """Return the normalized fields of an item, ``{}`` when it does not exist."""
        raw = await self._load_fields(vault, item)
        fields: dict[str, str] = {}
        for label, value in raw.items():
            fields[FIELD_ALIASES.get(label, label)] = normalize_value(value)
        return fields

    @abstractmethod
    async def _load_fields(self, vault: str, item: str) -> dict[str, str]:
        """Fetch the raw field mapping of an item."""

    @abstractmethod
    async def fetch_document(self, vault: str, item: str, field: str = "") -> str:
        """Fetch the content of a document, ``""`` when it does not exist."""

    @abstractmethod
    async def fetch_one_time_password(self, vault: str, item: str) -> str:
        """Fetch the current one-time password of an item."""

    async def aclose(self) -> None:
        """Release any client held by the backend."""
