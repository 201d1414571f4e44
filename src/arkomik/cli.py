from __future__ import annotations

import json
import sys

import click

from arkomik.config import ConfigError, get_settings
from arkomik.security.envelope import HEADER_HEX_LEN, is_envelope
from arkomik.security.token_cipher import TokenCipherError, decrypt_strict, encrypt
from arkomik.utils.log import set_log_level
from config.settings import get_safe_config_report


def _read_value(value: str) -> str:
    # "-" reads from stdin so tokens stay out of shell history.
    if value == "-":
        return sys.stdin.read().strip()
    return value


def _secret() -> str:
    try:
        s = get_settings()
    except ConfigError as ex:
        raise click.ClickException(str(ex)) from None
    if not s.has_cookie_secret():
        raise click.ClickException("COOKIE_ENCRYPTION_KEY is not set")
    return s.cookie_secret()


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL for this run.")
def cli(log_level: str | None) -> None:
    """arkomik auth service tools."""
    if log_level:
        set_log_level(log_level)


@cli.command()
@click.option("--host", default=None, help="Bind host (default: HOST).")
@click.option("--port", type=int, default=None, help="Bind port (default: PORT).")
def serve(host: str | None, port: int | None) -> None:
    """Run the HTTP API."""
    import uvicorn

    s = get_settings()
    uvicorn.run(
        "arkomik.server:app",
        host=host or str(s.host),
        port=int(port or s.port),
        log_config=None,
    )


@cli.command(name="encrypt")
@click.argument("token")
def encrypt_cmd(token: str) -> None:
    """Encrypt TOKEN ("-" for stdin) into a cookie envelope."""
    try:
        click.echo(encrypt(_read_value(token), secret=_secret()))
    except TokenCipherError as ex:
        raise click.ClickException(str(ex)) from None


@cli.command(name="decrypt")
@click.argument("envelope")
def decrypt_cmd(envelope: str) -> None:
    """Decrypt ENVELOPE ("-" for stdin). Exits non-zero if it does not authenticate."""
    try:
        click.echo(decrypt_strict(_read_value(envelope), secret=_secret()))
    except TokenCipherError as ex:
        raise click.ClickException(f"{type(ex).__name__}: {ex}") from None


@cli.command(name="inspect")
@click.argument("value")
def inspect_cmd(value: str) -> None:
    """Classify VALUE as envelope or raw token (no secret needed)."""
    v = _read_value(value)
    click.echo(
        json.dumps(
            {
                "envelope": is_envelope(v),
                "length": len(v),
                "header_length": HEADER_HEX_LEN,
            }
        )
    )


@cli.command(name="config-report")
def config_report() -> None:
    """Print the non-sensitive config report as JSON."""
    try:
        report = get_safe_config_report()
    except ConfigError as ex:
        raise click.ClickException(str(ex)) from None
    click.echo(json.dumps(report, indent=2, sort_keys=True, default=str))


if __name__ == "__main__":  # pragma: no cover
    cli()
