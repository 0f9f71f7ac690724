"""cdMenu: Bitbucket Pipelines health monitor served over MCP."""

import asyncio
import logging
import os

import click
from dotenv import load_dotenv


@click.command()
@click.option(
    "--transport",
    type=click.Choice(["stdio", "sse", "streamable-http"]),
    default="stdio",
    help="MCP transport type",
)
@click.option("--port", default=8000, help="Port for HTTP transports")
@click.option("--host", default="127.0.0.1", help="Host for HTTP transports")
@click.option("--bitbucket-username", envvar="BITBUCKET_USERNAME", help="Bitbucket username")
@click.option(
    "--bitbucket-app-password", envvar="BITBUCKET_APP_PASSWORD", help="Bitbucket app password"
)
@click.option(
    "--config-dir",
    envvar="CDMENU_CONFIG_DIR",
    type=click.Path(file_okay=False),
    help="Directory holding config.json and saved credentials",
)
@click.option(
    "--log-level",
    envvar="CDMENU_LOG_LEVEL",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    help="Log level (logs go to stderr)",
)
def main(
    transport: str,
    port: int,
    host: str,
    bitbucket_username: str | None,
    bitbucket_app_password: str | None,
    config_dir: str | None,
    log_level: str,
) -> None:
    """Run the cdMenu pipeline monitor MCP server."""
    load_dotenv()

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if bitbucket_username:
        os.environ["BITBUCKET_USERNAME"] = bitbucket_username
    if bitbucket_app_password:
        os.environ["BITBUCKET_APP_PASSWORD"] = bitbucket_app_password
    if config_dir:
        os.environ["CDMENU_CONFIG_DIR"] = config_dir

    from .servers.monitor import mcp

    run_kwargs: dict = {"transport": transport}
    if transport != "stdio":
        run_kwargs["host"] = host
        run_kwargs["port"] = port

    asyncio.run(mcp.run_async(show_banner=False, **run_kwargs))


if __name__ == "__main__":
    main()
