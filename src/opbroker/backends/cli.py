"""1Password CLI backend.

Shells out to ``op`` with JSON output. Requires an active CLI session (or a
service account token in the environment).
"""

import json
import logging
from typing import Any

from pydantic import ConfigDict, ValidationError

from opbroker.errors import BackendError
from opbroker.models import BrokerBaseModel
from opbroker.shell import CommandResult, CommandRunner, run_command

from .base import SecretBackend

logger = logging.getLogger(__name__)

NOT_FOUND_MARKERS = ("isn't an item", "isn't a vault", "not found")


class _CliVault(BrokerBaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = ""
    name: str = ""


class _CliField(BrokerBaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = ""
    type: str = ""  # CONCEALED, STRING, ...
    label: str = ""
    value: Any = None


class _CliItem(BrokerBaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    vault: _CliVault = _CliVault()
    fields: list[_CliField] = []


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _is_not_found(result: CommandResult) -> bool:
    message = result.stderr.lower()
    return any(marker in message for marker in NOT_FOUND_MARKERS)


class CliBackend(SecretBackend):
    """Backend running the local ``op`` executable."""

    name = "cli"
    requires_session = True

    def __init__(
        self, account: str = "", op_path: str = "op", runner: CommandRunner | None = None
    ) -> None:
        self.account = account
        self.op_path = op_path
        self._run = runner or run_command

    def _command(self, *args: str) -> list[str]:
        cmd = [self.op_path, *args]
        if self.account:
            cmd += ["--account", self.account]
        return cmd

    async def _load_fields(self, vault: str, item: str) -> dict[str, str]:
        result = await self._run(
            self._command("item", "get", item, "--vault", vault, "--format", "json")
        )
        if not result.ok:
            if _is_not_found(result):
                logger.debug("Item %s not found in vault %s", item, vault)
                return {}
            logger.error("Failed to retrieve item %s from vault %s", item, vault)
            raise BackendError(
                f"op item get failed for item '{item}' in vault '{vault}': {result.stderr.strip()}"
            )

        try:
            data = _CliItem.model_validate_json(result.stdout)
        except ValidationError as e:
            raise BackendError(
                f"Unexpected op output for item '{item}' in vault '{vault}': {e.error_count()} errors"
            ) from e

        if vault not in (data.vault.id, data.vault.name):
            logger.error("Failed to retrieve item: wrong vault %s for item %s", vault, item)
            return {}

        return {f.label: _format_value(f.value) for f in data.fields if f.label}

    async def fetch_document(self, vault: str, item: str, field: str = "") -> str:
        result = await self._run(self._command("document", "get", item, "--vault", vault))
        if not result.ok:
            if _is_not_found(result):
                return ""
            logger.error("Failed to retrieve document %s from vault %s", item, vault)
            raise BackendError(
                f"op document get failed for '{item}' in vault '{vault}': {result.stderr.strip()}"
            )
        return result.stdout

    async def fetch_one_time_password(self, vault: str, item: str) -> str:
        args = ["item", "get", item, "--otp"]
        if vault:
            args += ["--vault", vault]
        result = await self._run(self._command(*args))
        if not result.ok:
            raise BackendError(
                f"op item get --otp failed for '{item}' in vault '{vault}': {result.stderr.strip()}"
            )
        return result.stdout.strip()
