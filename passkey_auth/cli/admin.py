"""
cli/admin.py — Operator CLI for the passkey login bridge

Commands
- health        : verifier diagnostics (exit 1 when the passkey option would be hidden)
- plugins       : discovered auth plugins in chain order
- grants        : dry-run of the grants a passkey session would receive from ACL_DIR
- purge-tokens  : delete expired handoff tokens left by abandoned ceremonies
- serve         : run the front door (`--app front`) or the verifier RPC (`--app rpc`) under uvicorn

Config comes from the environment (see config.py); a local .env is loaded for
developer convenience.
"""

from __future__ import annotations

import json
import logging

import click
from dotenv import load_dotenv

from ..auth.registry import PluginRegistry
from ..config import Settings
from ..handoff.token_store import TokenStore
from ..session.acl import plan_grants
from ..verifier.gateway import VerifierGateway
from ..verifier.health import diagnose

APPS = {
    "front": "passkey_auth.server.api:app",
    "rpc": "passkey_auth.server.rpc_api:app",
}


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Passkey login bridge administration."""
    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = Settings.from_env()


@cli.command()
@click.pass_obj
def health(settings: Settings) -> None:
    """Report whether the verifier helper is installed and healthy."""
    report = diagnose(VerifierGateway(settings.helper_path, settings.user_verification))
    click.echo(json.dumps(report.to_dict(), indent=2))
    if not report.available:
        raise SystemExit(1)


@cli.command()
@click.pass_obj
def plugins(settings: Settings) -> None:
    """List auth plugins in the order the chain runs them."""
    registry = PluginRegistry.from_settings(settings)
    if not settings.plugins_enabled:
        click.echo("plugin chain disabled (AUTH_PLUGINS_ENABLED)")
        return
    found = registry.plugins()
    if not found:
        click.echo(f"no plugins in {settings.plugin_dir}")
        return
    for p in found:
        click.echo(f"{p.priority:>4}  {p.name:<16} {p.source}")


@cli.command()
@click.pass_obj
def grants(settings: Settings) -> None:
    """Show the grant calls a passkey session would receive."""
    calls = plan_grants(settings.acl_dir)
    for call in calls:
        for obj, perm in call.objects:
            click.echo(f"{call.scope:<13} {obj} {perm}")
    click.echo(f"{len(calls)} grant calls from {settings.acl_dir}", err=True)


@cli.command("purge-tokens")
@click.pass_obj
def purge_tokens(settings: Settings) -> None:
    """Delete expired handoff tokens."""
    removed = TokenStore(settings.token_dir, settings.token_ttl).purge_expired()
    click.echo(f"removed {removed} expired token(s)")


@cli.command()
@click.option("--app", "which", type=click.Choice(sorted(APPS)), default="front", show_default=True)
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=8080, show_default=True)
def serve(which: str, host: str, port: int) -> None:
    """Run one of the HTTP applications."""
    import uvicorn

    uvicorn.run(APPS[which], host=host, port=port)


if __name__ == "__main__":
    cli()
