"""Base Pydantic models and reference types for opbroker.

References are populated from YAML/JSON configuration elsewhere and handed to
the broker as-is, so every model here is immutable.

Example:
    >>> from opbroker.models import SecretReference
    >>> ref = SecretReference(vault="infra", item="postgres", field="password")
    >>> ref.model_dump()
    {'account': '', 'vault': 'infra', 'item': 'postgres', 'field': 'password'}
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class BrokerBaseModel(BaseModel):
    """Base model for all opbroker models.

    - extra="forbid": Rejects any fields not defined in the model
    - frozen=True: Makes instances immutable for thread safety
    """

    model_config = ConfigDict(extra="forbid", frozen=True)


class SecretReference(BrokerBaseModel):
    """A single named value inside a vault item.

    Attributes:
        account: Account shorthand the reference was written for. A broker
            serves exactly one configured account, so this is informational.
        vault: Vault id (or name, for the CLI backend)
        item: Item id or title
        field: Field label inside the item
    """

    account: str = ""
    vault: str
    item: str
    field: str


class DocumentReference(BrokerBaseModel):
    """A document (file) stored in a vault item.

    ``field`` names the file by id or name. The CLI backend downloads the
    item's document and ignores it.
    """

    account: str = ""
    vault: str
    item: str
    field: str = ""


class AuthState(BrokerBaseModel):
    """Snapshot of the authentication session."""

    account: str
    signed_in: bool = False
    signed_in_at: datetime | None = None
