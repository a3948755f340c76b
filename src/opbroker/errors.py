"""Error taxonomy for opbroker.

Messages carry the operation and the identifiers involved, never a secret
value.
"""


class BrokerError(Exception):
    """Base class for all opbroker errors."""


class ConfigError(BrokerError):
    """Raised when the broker configuration cannot be loaded or validated."""


class NotSignedInError(BrokerError):
    """Raised when the CLI backend is used without an active session."""

    def __init__(self, account: str):
        super().__init__(f"Not signed in to 1Password account '{account}'")
        self.account = account


class ItemNotFoundError(BrokerError):
    """Raised when a vault/item lookup returned nothing."""

    def __init__(self, vault: str, item: str, kind: str = "item"):
        super().__init__(f"Could not find {kind} '{item}' in vault '{vault}'")
        self.vault = vault
        self.item = item
        self.kind = kind


class FieldNotFoundError(BrokerError):
    """Raised when an item exists but does not carry the requested field."""

    def __init__(self, vault: str, item: str, field: str):
        super().__init__(f"Could not find field '{field}' in item '{item}' of vault '{vault}'")
        self.vault = vault
        self.item = item
        self.field = field


class BackendUnavailableError(BrokerError):
    """Raised when neither backend can be constructed."""


class BackendError(BrokerError):
    """Raised when the selected backend fails for a reason other than not-found."""


class SessionCheckError(BrokerError):
    """Raised when the account verification call itself fails."""


class SignInError(BrokerError):
    """Raised when the interactive sign-in flow fails."""


class RenderError(BrokerError):
    """Raised when a template cannot be parsed or evaluated."""


class TemplateFileError(BrokerError, OSError):
    """Raised when a template source cannot be read or its output written."""
