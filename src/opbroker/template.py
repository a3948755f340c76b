"""
Secret-aware template rendering.

Templates use ``<% ... %>`` for expressions (``<%% ... %%>`` for statements,
``<%# ... #%>`` for comments) so they can live inside YAML or JSON documents
that use ``{{ }}`` themselves:

```yaml
password: <% quote(op("acme", "infra", "postgres", "password")) %>
tls.key: |
  <% indent(2, op("acme", "infra", "tls", "private key")) %>
```

Referencing an undefined variable is an error, and any failing function aborts
the whole render: the caller gets either the complete output or a
:class:`~opbroker.errors.RenderError`.
"""

import base64
import logging
import os
from collections.abc import Awaitable, Callable

from jinja2 import Environment, StrictUndefined, TemplateError

from opbroker.errors import BrokerError, RenderError
from opbroker.models import SecretReference

logger = logging.getLogger(__name__)

Resolver = Callable[[SecretReference], Awaitable[str]]


def _env(name: str) -> str:
    value = os.environ.get(name, "")
    if value == "":
        raise RenderError(f"env variable {name!r} was empty")
    return value


def _indent(spaces: int, value: str) -> str:
    pad = " " * spaces
    return value.replace("\n", "\n" + pad)


def _quote(value: str) -> str:
    return "'" + value + "'"


def _replace(old: str, new: str, value: str) -> str:
    return value.replace(old, new)


def _base64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


class TemplateRenderer:
    """Renders templates whose ``op(...)`` calls go through ``resolve``."""

    def __init__(self, resolve: Resolver, name: str = "1password") -> None:
        self.name = name
        self._resolve = resolve
        self._environment = Environment(
            variable_start_string="<%",
            variable_end_string="%>",
            block_start_string="<%%",
            block_end_string="%%>",
            comment_start_string="<%#",
            comment_end_string="#%>",
            undefined=StrictUndefined,
            enable_async=True,
            autoescape=False,
            keep_trailing_newline=True,
        )
        self._environment.globals.update(
            {
                "env": _env,
                "op": self._op,
                "indent": _indent,
                "quote": _quote,
                "replace": _replace,
                "base64": _base64,
            }
        )

    async def _op(self, account: str, vault: str, item: str, field: str) -> str:
        return await self._resolve(
            SecretReference(account=account, vault=vault, item=item, field=field)
        )

    async def render(self, source: str) -> bytes:
        """Render ``source`` and return the UTF-8 encoded output.

        Raises:
            RenderError: On syntax errors, undefined variables or failing
                functions
        """
        try:
            template = self._environment.from_string(source)
            output = await template.render_async()
        except RenderError:
            raise
        except TemplateError as e:
            raise RenderError(f"Failed to render {self.name} template: {e}") from e
        except BrokerError as e:
            raise RenderError(f"Failed to render {self.name} template: {e}") from e
        except (TypeError, ValueError) as e:
            raise RenderError(
                f"Failed to render {self.name} template: invalid function call ({e.__class__.__name__})"
            ) from e
        except Exception as e:
            raise RenderError(
                f"Failed to render {self.name} template: evaluation failed ({e.__class__.__name__})"
            ) from e
        return output.encode("utf-8")
