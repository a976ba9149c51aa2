# src/espa/apps/cli/main.py
import logging
import os
from pathlib import Path

import typer
import uvicorn
import yaml

from espa.config.const import CONFIG_ENV_VAR
from espa.config.settings import load_settings

app = typer.Typer(help="ESPA TV control service")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8080, "--port"),
    reload: bool = typer.Option(False, "--reload", help="restart on code changes (development)"),
    config: Path = typer.Option(None, "--config", exists=True, dir_okay=False, help="YAML file merged over the defaults"),
    log_level: str = typer.Option("info", "--log-level"),
):
    """Run the HTTP API (FastAPI on uvicorn)."""
    _setup_logging(log_level)
    if config is not None:
        # the app factory runs in the server process and reads settings from env
        os.environ[CONFIG_ENV_VAR] = str(config)
    uvicorn.run(
        "espa.apps.api.server:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level.lower(),
    )


@app.command("config")
def show_config(
    config: Path = typer.Option(None, "--config", exists=True, dir_okay=False),
    show_secrets: bool = typer.Option(False, "--show-secrets"),
):
    """Print the effective settings."""
    settings = load_settings(config)
    typer.echo(yaml.safe_dump(settings.as_dict(mask_secrets=not show_secrets), sort_keys=False, allow_unicode=True))


if __name__ == "__main__":
    app()
