"""Authentication status check shown by shell prompts and ``opbroker status``."""

import logging
from dataclasses import dataclass

from opbroker.broker import SecretBroker
from opbroker.errors import SessionCheckError

logger = logging.getLogger(__name__)

CHECK_NAME = "1Password"


@dataclass(frozen=True)
class CheckInfo:
    name: str
    ok: bool
    message: str


async def check_authentication(broker: SecretBroker) -> CheckInfo:
    try:
        ok = await broker.is_authenticated()
    except SessionCheckError as e:
        logger.debug("Authentication check failed: %s", e)
        ok = False
    if ok:
        return CheckInfo(CHECK_NAME, True, "Authenticated")
    return CheckInfo(CHECK_NAME, False, "Run `opbroker auth` to sign into 1Password")
