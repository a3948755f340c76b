"""
1Password authentication session.

Verifying the session means running ``op account get``, which is slow, so a
successful verification is trusted for ``session_ttl`` seconds. A session
token shared through a dotenv file is reloaded on every check; when it
changed, the cached result is ignored.

Non-interactive credentials (a service account token, or a Connect host and
token) short-circuit every check.
"""

import json
import logging
import os
import time
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from pathlib import Path

from dotenv import dotenv_values

from opbroker.config import BrokerConfigModel
from opbroker.errors import SessionCheckError, SignInError
from opbroker.keepalive import KeepAliveRegistry
from opbroker.liveness import LivenessCheck
from opbroker.models import AuthState
from opbroker.shell import CommandResult, CommandRunner, run_command, run_interactive

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_TOKEN_ENV = "OP_SERVICE_ACCOUNT_TOKEN"
CONNECT_TOKEN_ENV = "OP_CONNECT_TOKEN"
CONNECT_HOST_ENV = "OP_CONNECT_HOST"

InteractiveRunner = Callable[[Sequence[str], bool], Awaitable[CommandResult]]


def has_non_interactive_credentials() -> bool:
    """Whether the environment carries credentials that need no sign-in."""
    if os.environ.get(SERVICE_ACCOUNT_TOKEN_ENV):
        return True
    return bool(os.environ.get(CONNECT_TOKEN_ENV) and os.environ.get(CONNECT_HOST_ENV))


class AuthSession:
    """Tracks whether the process is signed in to the configured account."""

    def __init__(
        self,
        config: BrokerConfigModel,
        runner: CommandRunner | None = None,
        interactive_runner: InteractiveRunner | None = None,
        registry: KeepAliveRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._run = runner or run_command
        self._run_interactive = interactive_runner or run_interactive
        self.registry = registry or KeepAliveRegistry()
        self._liveness = LivenessCheck(self._verify_account, ttl=config.session_ttl, clock=clock)
        self._signed_in_at: datetime | None = None

    @property
    def account(self) -> str:
        return self.config.account

    @property
    def state(self) -> AuthState:
        signed_in = self._liveness.alive
        return AuthState(
            account=self.account,
            signed_in=signed_in,
            signed_in_at=self._signed_in_at if signed_in else None,
        )

    async def is_authenticated(self) -> bool:
        """Check the session, re-verifying it when the cached result is stale.

        Returns:
            True if signed in to the configured account, False if signed in to
            another account or not at all

        Raises:
            SessionCheckError: If the verification command itself fails
        """
        if has_non_interactive_credentials():
            return True

        changed = self._reload_token_file()
        ok = await self._liveness.probe(force=changed)
        if ok:
            self._arm_keepalive()
        return ok

    async def sign_in(self) -> None:
        """Run the interactive sign-in unless already authenticated.

        Raises:
            SignInError: If ``op signin`` fails or returns no token, or the
                token file cannot be written
        """
        try:
            if await self.is_authenticated():
                return
        except SessionCheckError as e:
            logger.debug("Session check before sign-in failed: %s", e)

        result = await self._run_interactive(
            [self.config.op_path, "signin", "--account", self.account, "--raw"], True
        )
        if not result.ok:
            raise SignInError(
                f"op signin failed for account '{self.account}' (exit code {result.returncode})"
            )

        token = result.stdout.strip()
        if not token:
            raise SignInError("Failed to retrieve 1Password session token")

        os.environ[self.config.session_env] = token
        logger.info(
            "If you need op outside the shell, export %s with the session token",
            self.config.session_env,
        )

        if self.config.token_filename is not None:
            self._write_token_file(self.config.token_filename, token)
            logger.info(
                "Session env has been stored for your convenience at: %s",
                self.config.token_filename,
            )

        self._liveness.invalidate()
        self._arm_keepalive()

    async def close(self) -> None:
        await self.registry.stop(self.account)

    async def _verify_account(self) -> bool:
        result = await self._run(
            [self.config.op_path, "account", "get", "--account", self.account, "--format", "json"]
        )
        if not result.ok:
            raise SessionCheckError(
                f"op account get failed for '{self.account}': {result.stderr.strip()}"
            )

        try:
            name = json.loads(result.stdout).get("name")
        except (json.JSONDecodeError, AttributeError) as e:
            raise SessionCheckError(
                f"Unexpected op account get output for '{self.account}'"
            ) from e

        if name == self.account:
            self._signed_in_at = datetime.now()
            return True

        logger.debug("Signed in to account %r, expected %r", name, self.account)
        return False

    def _reload_token_file(self) -> bool:
        """Reload the token file into the environment; True when the session changed."""
        path = self.config.token_filename
        if path is None:
            return False

        before = os.environ.get(self.config.session_env)
        if not path.is_file():
            logger.debug("Could not load session from env file: %s", path)
            return True
        try:
            values = dotenv_values(path, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug("Could not load session from env file %s: %s", path, e)
            return True

        for key, value in values.items():
            if value is not None:
                os.environ[key] = value

        if os.environ.get(self.config.session_env) != before:
            logger.debug("Loaded new op session from file: %s", path)
            return True
        return False

    def _write_token_file(self, path: Path, token: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                f.write(f"{self.config.session_env}={token}\n")
            path.chmod(0o600)
        except OSError as e:
            raise SignInError(f"Failed to store session token at {path}: {e.strerror}") from e

    def _arm_keepalive(self) -> None:
        self.registry.arm(self.account, self.is_authenticated, self.config.keepalive_interval)
