"""Pydantic models for broker configuration.

The configuration lives under a section (``onepassword`` by default) of a
YAML file:

```yaml
onepassword:
  account: acme
  token_filename: ~/.opbroker/session.env
  session_ttl: 600
  keepalive_interval: 900
  cache_ttl: null
```
"""

from pathlib import Path

from pydantic import Field, field_validator

from opbroker.models import BrokerBaseModel


class BrokerConfigModel(BrokerBaseModel):
    """Configuration for a secret broker bound to one 1Password account.

    Attributes:
        account: Account shorthand used for ``--account`` and ``OP_SESSION_<account>``
        token_filename: Optional dotenv file used to share the session token
            between processes
        session_ttl: Seconds a successful account verification is trusted
        keepalive_interval: Seconds between keep-alive verifications
        cache_ttl: Seconds a fetched item stays cached. ``None`` keeps entries
            for the lifetime of the process
        op_path: Name or path of the 1Password CLI executable
        address_domain: Sign-in domain used by ``register``
        tool_name: Name written into the generated-file banner

    Example:
        >>> config = BrokerConfigModel(account="acme", cache_ttl=3600)
    """

    account: str = Field(min_length=1)
    token_filename: Path | None = None
    session_ttl: float = Field(default=600.0, gt=0)
    keepalive_interval: float = Field(default=900.0, gt=0)
    cache_ttl: float | None = Field(default=None, gt=0)
    op_path: str = "op"
    address_domain: str = "1password.eu"
    tool_name: str = "opbroker"

    @field_validator("token_filename")
    @classmethod
    def _expand_token_filename(cls, value: Path | None) -> Path | None:
        if value is None:
            return None
        return value.expanduser()

    @property
    def session_env(self) -> str:
        """Name of the environment variable holding the session token."""
        return f"OP_SESSION_{self.account}"
