"""
Secret broker facade.

``SecretBroker`` is what provider packages talk to: it resolves secret and
document references, renders templates that embed them, and keeps the
1Password session alive.

Example:
    >>> config = load_config()
    >>> async with SecretBroker(config) as broker:
    ...     password = await broker.get(
    ...         SecretReference(vault="infra", item="postgres", field="password")
    ...     )
    ...     await broker.render_file_to("values.yaml.tpl", "values.yaml")
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from types import TracebackType

from opbroker.backends import SecretBackend, normalize_value, select_backend
from opbroker.cache import CacheNamespace, SecretCache
from opbroker.config import BrokerConfigModel
from opbroker.errors import (
    FieldNotFoundError,
    ItemNotFoundError,
    NotSignedInError,
    SessionCheckError,
    TemplateFileError,
)
from opbroker.models import AuthState, DocumentReference, SecretReference
from opbroker.session import AuthSession
from opbroker.template import TemplateRenderer

logger = logging.getLogger(__name__)

BANNER_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class SecretBroker:
    """Resolves 1Password secrets for one account.

    The backend is chosen once, at construction: pass one explicitly or let
    :func:`~opbroker.backends.select_backend` pick it from the environment.
    """

    def __init__(
        self,
        config: BrokerConfigModel,
        backend: SecretBackend | None = None,
        session: AuthSession | None = None,
        cache: SecretCache | None = None,
    ) -> None:
        self.config = config
        self._backend = backend if backend is not None else select_backend(config)
        self.session = session or AuthSession(config)
        if cache is None:
            cache = SecretCache(ttl=config.cache_ttl)
        self._cache: CacheNamespace = cache.namespace("onepassword")
        self._renderer = TemplateRenderer(self.get)

    @property
    def backend(self) -> SecretBackend:
        return self._backend

    @property
    def state(self) -> AuthState:
        return self.session.state

    async def __aenter__(self) -> "SecretBroker":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Stop the keep-alive worker and release the backend."""
        try:
            await self.session.close()
        finally:
            await self._backend.aclose()

    async def is_authenticated(self) -> bool:
        return await self.session.is_authenticated()

    async def sign_in(self) -> None:
        await self.session.sign_in()

    def invalidate(self, ref: SecretReference | DocumentReference | None = None) -> None:
        """Forget cached lookups, for one reference or all of them."""
        if ref is None:
            self._cache.invalidate()
        elif isinstance(ref, DocumentReference):
            self._cache.invalidate(self._document_key(ref))
        else:
            self._cache.invalidate(self._item_key(ref.vault, ref.item))

    async def get(self, ref: SecretReference) -> str:
        """Resolve a single field.

        Raises:
            NotSignedInError: If the backend needs a session and there is none
            ItemNotFoundError: If the item does not exist
            FieldNotFoundError: If the item has no such field
            BackendError: If the backend call fails
        """
        await self._require_session()

        fields = await self._cache.get(
            self._item_key(ref.vault, ref.item),
            lambda: self._backend.fetch_fields(ref.vault, ref.item),
        )
        if not fields:
            raise ItemNotFoundError(ref.vault, ref.item)
        if ref.field not in fields:
            raise FieldNotFoundError(ref.vault, ref.item, ref.field)
        return fields[ref.field]

    async def get_document(self, ref: DocumentReference) -> str:
        """Resolve the content of a document."""
        await self._require_session()

        content = await self._cache.get(
            self._document_key(ref),
            lambda: self._backend.fetch_document(ref.vault, ref.item, ref.field),
        )
        if not content:
            raise ItemNotFoundError(ref.vault, ref.item, kind="document")
        return content

    async def get_one_time_password(self, vault: str, item: str) -> str:
        """Current one-time password of an item. Never cached."""
        await self._require_session()
        return normalize_value(await self._backend.fetch_one_time_password(vault, item))

    async def render(self, source: str) -> bytes:
        return await self._renderer.render(source)

    async def render_file(self, source: str | Path) -> bytes:
        try:
            text = Path(source).read_text(encoding="utf-8")
        except OSError as e:
            raise TemplateFileError(f"Failed to read template {source}: {e.strerror}") from e
        except UnicodeDecodeError as e:
            raise TemplateFileError(f"Failed to read template {source}: not valid UTF-8") from e
        return await self.render(text)

    async def render_file_to(self, source: str | Path, target: str | Path) -> None:
        """Render ``source`` into ``target`` behind a generated-file banner."""
        out = await self.render_file(source)
        banner = "# Code generated by {} {} - DO NOT EDIT.\n".format(
            self.config.tool_name, datetime.now().strftime(BANNER_TIME_FORMAT)
        )
        try:
            fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(banner.encode("utf-8") + out)
        except OSError as e:
            raise TemplateFileError(f"Failed to write {target}: {e.strerror}") from e
        logger.debug("Rendered %s to %s", source, target)

    async def _require_session(self) -> None:
        if not self._backend.requires_session:
            return
        try:
            ok = await self.session.is_authenticated()
        except SessionCheckError as e:
            raise NotSignedInError(self.config.account) from e
        if not ok:
            raise NotSignedInError(self.config.account)

    @staticmethod
    def _item_key(vault: str, item: str) -> str:
        return f"item:{item}@{vault}"

    @staticmethod
    def _document_key(ref: DocumentReference) -> str:
        return f"document:{ref.item}@{ref.vault}#{ref.field}"
