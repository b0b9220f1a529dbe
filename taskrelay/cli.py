"""taskrelay command-line interface."""

from __future__ import annotations

import dataclasses
import logging

import click
import uvicorn
from fastapi import FastAPI

from .bindings.http import create_a2a_http_app
from .config import A2AConfig
from .handlers import echo_handler
from .manager import TaskManager

logger = logging.getLogger("taskrelay.cli")


def build_echo_app(config: A2AConfig) -> FastAPI:
    """Serve an agent that replies with the text it receives."""
    manager = TaskManager(handler=echo_handler)
    return create_a2a_http_app(manager, config)


@click.group()
@click.version_option(package_name="taskrelay")
def app() -> None:
    """taskrelay CLI - serve A2A task endpoints."""


@app.command()
@click.option("--host", default=None, help="Interface to bind and advertise (TASKRELAY_HOST).")
@click.option("--port", type=int, default=None, help="Port to listen on (TASKRELAY_PORT).")
@click.option("--base-path", default=None, help="JSON-RPC endpoint path (TASKRELAY_BASE_PATH).")
@click.option("--agent-name", default=None, help="Name published in the agent card.")
@click.option(
    "--auth-token",
    default=None,
    envvar="TASKRELAY_AUTH_TOKEN",
    help="Require this bearer token on task endpoints.",
)
@click.option(
    "--cleanup-interval",
    type=float,
    default=None,
    help="Seconds between sweeps of expired tasks; 0 disables.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging level (TASKRELAY_LOG_LEVEL).",
)
def serve(
    host: str | None,
    port: int | None,
    base_path: str | None,
    agent_name: str | None,
    auth_token: str | None,
    cleanup_interval: float | None,
    log_level: str | None,
) -> None:
    """Run an echo agent over HTTP."""
    try:
        config = A2AConfig.from_env()
        overrides = {
            "host": host,
            "port": port,
            "base_path": base_path,
            "agent_name": agent_name,
            "auth_token": auth_token,
            "cleanup_interval_s": cleanup_interval,
            "log_level": log_level,
        }
        config = dataclasses.replace(config, **{key: value for key, value in overrides.items() if value is not None})
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logger.info(
        "server_starting",
        extra={"host": config.host, "port": config.port, "base_path": config.base_path},
    )
    click.echo(f"Serving {config.agent_name} at {config.agent_url}")
    server_config = uvicorn.Config(
        build_echo_app(config),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )
    uvicorn.Server(server_config).run()


if __name__ == "__main__":  # pragma: no cover
    app()
