import asyncio
import logging
import os
import traceback
from collections.abc import Awaitable
from typing import Any, TypeVar

import click

T = TypeVar("T")


def get_env_flag(env_var: str, default: bool = False) -> bool:
    """Get a boolean flag from an environment variable.

    Args:
        env_var: Name of the environment variable
        default: Default value if environment variable is not set

    Returns:
        True if the environment variable is set to "1", "true", or "yes" (case insensitive)
        False otherwise
    """
    value = os.environ.get(env_var, "").lower()
    return value in ("1", "true", "yes") if value else default


def configure_logging(debug: bool = False) -> None:
    """Configure logging for all modules.

    Args:
        debug: Whether to enable debug logging
    """
    if not debug:
        debug = get_env_flag("OPBROKER_DEBUG")

    log_level = logging.DEBUG if debug else logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove any existing handlers to avoid duplicate messages
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter("%(levelname)s:%(name)s:%(message)s"))
    root_logger.addHandler(handler)


def format_error(error: BaseException, debug: bool = False) -> dict[str, Any]:
    """Format an error for output."""
    error_info = {"error": str(error)}

    if debug:
        error_info["traceback"] = "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        )
        error_info["type"] = error.__class__.__name__

    return error_info


def output_error(error: BaseException, debug: bool = False) -> None:
    """Print an error to stderr and abort the command."""
    error_info = format_error(error, debug)

    click.echo(f"Error: {error_info['error']}", err=True)
    if debug and "traceback" in error_info:
        click.echo("\nTraceback:", err=True)
        click.echo(error_info["traceback"], err=True)

    raise click.Abort()


def run_async(coro: Awaitable[T], debug: bool = False) -> T | None:
    """Run a command coroutine, turning failures into CLI errors."""

    async def _main() -> T:
        return await coro

    try:
        return asyncio.run(_main())
    except click.ClickException:
        raise
    except KeyboardInterrupt:
        click.echo("\nOperation cancelled by user", err=True)
        raise click.Abort() from None
    except Exception as e:
        output_error(e, debug)
    return None
