"""1Password Connect backend.

Talks to a Connect server over its REST API. Available when ``OP_CONNECT_HOST``
and ``OP_CONNECT_TOKEN`` are set; no CLI session is involved.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

import httpx
from pydantic import ConfigDict, TypeAdapter, ValidationError

from opbroker.errors import BackendError
from opbroker.models import BrokerBaseModel

from .base import SecretBackend, is_item_id

logger = logging.getLogger(__name__)

CONNECT_HOST_ENV = "OP_CONNECT_HOST"
CONNECT_TOKEN_ENV = "OP_CONNECT_TOKEN"


class _ConnectField(BrokerBaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = ""
    type: str = ""
    label: str = ""
    value: str | None = None
    totp: str | None = None


class _ConnectItem(BrokerBaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    title: str = ""
    fields: list[_ConnectField] = []


class _ConnectSummary(BrokerBaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    title: str = ""


class _ConnectFile(BrokerBaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    name: str = ""


_summaries = TypeAdapter(list[_ConnectSummary])
_files = TypeAdapter(list[_ConnectFile])


def title_filter(title: str) -> str:
    """SCIM filter matching an item title exactly."""
    escaped = title.replace("\\", "\\\\").replace('"', '\\"')
    return f'title eq "{escaped}"'


class ConnectBackend(SecretBackend):
    """Backend calling the 1Password Connect REST API."""

    name = "connect"
    requires_session = False

    def __init__(
        self,
        host: str,
        token: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = 30.0,
    ) -> None:
        self.host = host.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.host,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
            timeout=timeout,
        )

    @classmethod
    def from_environment(
        cls, environ: Mapping[str, str] | None = None, **kwargs: Any
    ) -> ConnectBackend | None:
        """Build a backend from the Connect variables, or None when they are missing."""
        env = os.environ if environ is None else environ
        host = env.get(CONNECT_HOST_ENV, "")
        token = env.get(CONNECT_TOKEN_ENV, "")
        if not host or not token:
            return None
        return cls(host, token, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self, path: str, what: str, params: dict[str, str] | None = None
    ) -> httpx.Response | None:
        """GET ``path``; None on 404, BackendError on any other failure."""
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as e:
            logger.error("Failed to retrieve %s: %s", what, e.__class__.__name__)
            raise BackendError(f"Connect request for {what} failed: {e}") from e
        if response.status_code == 404:
            return None
        if response.is_error:
            raise BackendError(f"Connect request for {what} failed with HTTP {response.status_code}")
        return response

    async def _resolve_item_id(self, vault: str, item: str) -> str | None:
        if is_item_id(item):
            return item
        matches = await self._find_by_title(vault, item)
        if not matches:
            return None
        return matches[0].id

    async def _find_by_title(self, vault: str, title: str) -> list[_ConnectSummary]:
        what = f"item titled '{title}' in vault '{vault}'"
        response = await self._request(
            f"/v1/vaults/{vault}/items", what, params={"filter": title_filter(title)}
        )
        if response is None:
            return []
        try:
            return _summaries.validate_json(response.content)
        except ValidationError as e:
            raise BackendError(f"Unexpected Connect response for {what}") from e

    async def _get_item(self, vault: str, item: str) -> _ConnectItem | None:
        item_id = await self._resolve_item_id(vault, item)
        if item_id is None:
            return None
        what = f"item '{item}' in vault '{vault}'"
        response = await self._request(f"/v1/vaults/{vault}/items/{item_id}", what)
        if response is None:
            return None
        try:
            return _ConnectItem.model_validate_json(response.content)
        except ValidationError as e:
            raise BackendError(f"Unexpected Connect response for {what}") from e

    async def _load_fields(self, vault: str, item: str) -> dict[str, str]:
        data = await self._get_item(vault, item)
        if data is None:
            logger.debug("Item %s not found in vault %s", item, vault)
            return {}
        return {f.label: f.value or "" for f in data.fields if f.label}

    async def fetch_document(self, vault: str, item: str, field: str = "") -> str:
        item_id = await self._resolve_item_id(vault, item)
        if item_id is None:
            return ""
        what = f"files of item '{item}' in vault '{vault}'"
        response = await self._request(f"/v1/vaults/{vault}/items/{item_id}/files", what)
        if response is None:
            return ""
        try:
            files = _files.validate_json(response.content)
        except ValidationError as e:
            raise BackendError(f"Unexpected Connect response for {what}") from e

        match = next((f for f in files if not field or field in (f.id, f.name)), None)
        if match is None:
            return ""

        content = await self._request(
            f"/v1/vaults/{vault}/items/{item_id}/files/{match.id}/content",
            f"file '{match.name or match.id}' of item '{item}'",
        )
        return content.text if content is not None else ""

    async def fetch_one_time_password(self, vault: str, item: str) -> str:
        data = await self._get_item(vault, item)
        if data is not None:
            for f in data.fields:
                if f.type == "OTP" and f.totp:
                    return f.totp
        raise BackendError(f"No one-time password on item '{item}' in vault '{vault}'")
