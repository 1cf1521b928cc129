"""CLI entry point for ai-failover."""

from __future__ import annotations

import asyncio
import json
from typing import Optional

import typer

from .config import ConfigError, RouterConfig
from .providers.base import AIError, RequestOptions
from .runtime import FailoverRuntime

app = typer.Typer(help="Route prompts across AI providers with automatic failover.")


def _load_config() -> RouterConfig:
    try:
        return RouterConfig.from_env()
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc


@app.command()
def status(
    initialize: bool = typer.Option(False, "--initialize", help="Initialize every enabled provider first."),
) -> None:
    """Print provider health, the active provider and the fallback chain as JSON."""
    config = _load_config()
    runtime = FailoverRuntime(config=config)

    async def _runner() -> dict:
        try:
            if initialize:
                await runtime.initialize_all()
            return runtime.status.snapshot()
        finally:
            await runtime.stop()

    snapshot = asyncio.run(_runner())
    typer.echo(json.dumps(snapshot, indent=2, default=str))


@app.command("export-config")
def export_config() -> None:
    """Print the effective configuration with credentials redacted."""
    typer.echo(_load_config().export())


@app.command()
def validate() -> None:
    """Check the configuration and report every problem found."""
    valid, errors = _load_config().validate()
    if not valid:
        for error in errors:
            typer.secho(f"- {error}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.secho("Configuration is valid", fg=typer.colors.GREEN)


@app.command()
def send(
    prompt: str = typer.Argument(..., help="Prompt text sent as a single user message."),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="Provider to make active first."),
    no_cache: bool = typer.Option(False, "--no-cache", help="Bypass the response cache."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Per-provider deadline in seconds."),
    system: Optional[str] = typer.Option(None, "--system", help="System prompt."),
) -> None:
    """Send a prompt through the fallback router and print the reply."""
    config = _load_config()
    runtime = FailoverRuntime(config=config)
    options = RequestOptions(cache=not no_cache, timeout=timeout, system_prompt=system)

    async def _runner():
        try:
            if provider:
                await runtime.switch_provider(provider)
            return await runtime.send_prompt(prompt, options)
        finally:
            await runtime.stop()

    try:
        response = asyncio.run(_runner())
    except AIError as exc:
        typer.secho(f"{exc.type.value}: {exc.message}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(response.content)
    typer.secho(f"[{response.provider} / {response.model}]", fg=typer.colors.BLUE, err=True)


def main() -> None:
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    main()
