"""Secret backends and backend selection."""

import logging
import os
from collections.abc import Mapping

from opbroker.config import BrokerConfigModel
from opbroker.errors import BackendUnavailableError
from opbroker.shell import check_command_available

from .base import FIELD_ALIASES, SecretBackend, is_item_id, normalize_value
from .cli import CliBackend
from .connect import ConnectBackend

logger = logging.getLogger(__name__)


def select_backend(
    config: BrokerConfigModel, environ: Mapping[str, str] | None = None
) -> SecretBackend:
    """Pick the backend once, from what the environment provides.

    Connect wins when its host and token are set; otherwise the local CLI is
    used if the executable can be found.

    Raises:
        BackendUnavailableError: If neither backend can be built
    """
    env = os.environ if environ is None else environ

    connect = ConnectBackend.from_environment(env)
    if connect is not None:
        logger.debug("Using 1Password Connect backend at %s", connect.host)
        return connect

    if check_command_available(config.op_path):
        logger.debug("Using 1Password CLI backend (%s)", config.op_path)
        return CliBackend(account=config.account, op_path=config.op_path)

    raise BackendUnavailableError(
        f"No 1Password backend available: set OP_CONNECT_HOST and OP_CONNECT_TOKEN "
        f"or install the '{config.op_path}' CLI"
    )


__all__ = [
    "FIELD_ALIASES",
    "CliBackend",
    "ConnectBackend",
    "SecretBackend",
    "is_item_id",
    "normalize_value",
    "select_backend",
]
