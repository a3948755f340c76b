import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from opbroker.broker import SecretBroker
from opbroker.checker import check_authentication
from opbroker.config import BrokerConfigModel, load_config
from opbroker.errors import SessionCheckError
from opbroker.models import DocumentReference, SecretReference
from opbroker.shell import run_interactive

from .utils import configure_logging, run_async

BrokerFactory = Callable[[BrokerConfigModel], SecretBroker]


def _config(ctx: click.Context) -> BrokerConfigModel:
    obj: dict[str, Any] = ctx.obj
    if obj.get("config") is None:
        obj["config"] = load_config(obj.get("config_path"))
    config: BrokerConfigModel = obj["config"]
    return config


def _broker(ctx: click.Context) -> SecretBroker:
    factory: BrokerFactory = ctx.obj.get("broker_factory") or SecretBroker
    return factory(_config(ctx))


@click.group(invoke_without_command=True)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to the broker config file",
)
@click.option("--debug", is_flag=True, help="Show detailed debug information")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, debug: bool) -> None:
    """1Password secret broker"""
    ctx.ensure_object(dict)
    if config_path is not None:
        ctx.obj["config_path"] = config_path
    ctx.obj["debug"] = debug
    configure_logging(debug)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


async def _sign_in(ctx: click.Context) -> None:
    async with _broker(ctx) as broker:
        try:
            if await broker.is_authenticated():
                click.echo("Already signed in")
                return
        except SessionCheckError:
            pass
        await broker.sign_in()
        click.echo(f"Signed in to {broker.config.account}")


@cli.command(name="auth")
@click.pass_context
def auth(ctx: click.Context) -> None:
    """Sign into your account"""
    run_async(_sign_in(ctx), ctx.obj["debug"])


@cli.command(name="signin")
@click.pass_context
def signin(ctx: click.Context) -> None:
    """Sign into your account (alias of auth)"""
    run_async(_sign_in(ctx), ctx.obj["debug"])


@cli.command(name="get")
@click.argument("item")
@click.option("--vault", required=True, help="Vault id or name")
@click.option("--field", default="password", show_default=True, help="Field label")
@click.option("--otp", is_flag=True, help="Print the current one-time password instead")
@click.pass_context
def get(ctx: click.Context, item: str, vault: str, field: str, otp: bool) -> None:
    """Retrieve a field of an item.

    \b
    Examples:
        opbroker get postgres --vault infra
        opbroker get github --vault infra --field token
        opbroker get aws-root --vault infra --otp
    """

    async def _get() -> None:
        async with _broker(ctx) as broker:
            if otp:
                value = await broker.get_one_time_password(vault, item)
            else:
                value = await broker.get(
                    SecretReference(
                        account=broker.config.account, vault=vault, item=item, field=field
                    )
                )
            click.echo(value)

    run_async(_get(), ctx.obj["debug"])


@cli.command(name="download")
@click.argument("item")
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--vault", required=True, help="Vault id or name")
@click.option("--field", default="", help="File id or name (Connect only)")
@click.pass_context
def download(ctx: click.Context, item: str, output: Path, vault: str, field: str) -> None:
    """Download a document"""

    async def _download() -> None:
        async with _broker(ctx) as broker:
            content = await broker.get_document(
                DocumentReference(
                    account=broker.config.account, vault=vault, item=item, field=field
                )
            )
        output.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        fd = os.open(output, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(content)
        click.echo(f"Saved document to {output}")

    run_async(_download(), ctx.obj["debug"])


@cli.command(name="register")
@click.argument("email")
@click.pass_context
def register(ctx: click.Context, email: str) -> None:
    """Register an account"""
    runner = ctx.obj.get("interactive_runner") or run_interactive

    async def _register() -> None:
        config = _config(ctx)
        result = await runner(
            [
                config.op_path,
                "account",
                "add",
                "--address",
                f"{config.account}.{config.address_domain}",
                "--email",
                email,
            ],
            False,
        )
        if not result.ok:
            raise click.ClickException(f"op account add failed (exit code {result.returncode})")

    run_async(_register(), ctx.obj["debug"])


@cli.command(name="render")
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("target", required=False, type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def render(ctx: click.Context, source: Path, target: Path | None) -> None:
    """Render a template, to stdout or into TARGET.

    \b
    Templates reference secrets with <% op("account", "vault", "item", "field") %>.
    """

    async def _render() -> None:
        async with _broker(ctx) as broker:
            if target is None:
                click.echo((await broker.render_file(source)).decode("utf-8"), nl=False)
            else:
                await broker.render_file_to(source, target)

    run_async(_render(), ctx.obj["debug"])


@cli.command(name="status")
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the authentication status"""

    async def _status() -> bool:
        async with _broker(ctx) as broker:
            info = await check_authentication(broker)
        mark = click.style("✓", fg="green") if info.ok else click.style("✗", fg="red")
        click.echo(f"{mark} {info.name}: {info.message}")
        return info.ok

    if not run_async(_status(), ctx.obj["debug"]):
        ctx.exit(1)
