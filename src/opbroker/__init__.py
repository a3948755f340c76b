"""opbroker - 1Password secret broker for shell automation.

Resolves secrets and documents from a 1Password account through either a
Connect server or the local ``op`` CLI, keeps the CLI session alive, and renders
templates that embed secret references.

## Quick Start

```python
from opbroker import SecretBroker, SecretReference, load_config

async with SecretBroker(load_config()) as broker:
    if not await broker.is_authenticated():
        await broker.sign_in()
    token = await broker.get(SecretReference(vault="infra", item="github", field="token"))
```
"""

from opbroker.broker import SecretBroker
from opbroker.cache import SecretCache
from opbroker.config import BrokerConfigModel, load_config
from opbroker.errors import (
    BackendError,
    BackendUnavailableError,
    BrokerError,
    ConfigError,
    FieldNotFoundError,
    ItemNotFoundError,
    NotSignedInError,
    RenderError,
    SessionCheckError,
    SignInError,
    TemplateFileError,
)
from opbroker.liveness import LivenessCheck
from opbroker.models import AuthState, DocumentReference, SecretReference
from opbroker.session import AuthSession
from opbroker.template import TemplateRenderer

__all__ = [
    "AuthSession",
    "AuthState",
    "BackendError",
    "BackendUnavailableError",
    "BrokerConfigModel",
    "BrokerError",
    "ConfigError",
    "DocumentReference",
    "FieldNotFoundError",
    "ItemNotFoundError",
    "LivenessCheck",
    "NotSignedInError",
    "RenderError",
    "SecretBroker",
    "SecretCache",
    "SecretReference",
    "SessionCheckError",
    "SignInError",
    "TemplateFileError",
    "TemplateRenderer",
    "load_config",
]
