"""Main CLI entry point for devrelay."""

import logging

import click

from devrelay import __version__
from devrelay.config.settings import Settings


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    type=click.Path(exists=True),
    help="Path to configuration file"
)
@click.option("--log-level", default="WARNING", help="Log level (DEBUG, INFO, WARNING, ERROR)")
@click.pass_context
def cli(ctx, config, log_level):
    """devrelay - transparent HTTP relay and resilient client toolkit.

    Run the relay in front of a backend origin, then exercise it with
    retrying calls, bursts and push-event streams.
    """
    # Ensure context object exists
    ctx.ensure_object(dict)

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    # Load settings
    if config:
        ctx.obj["settings"] = Settings.load_from_file(config)
    else:
        ctx.obj["settings"] = Settings()


# Import and register commands
from devrelay.cli.proxy_cmd import serve
from devrelay.cli.run import call, burst, check
from devrelay.cli.events_cmd import events

cli.add_command(serve)
cli.add_command(call)
cli.add_command(burst)
cli.add_command(check)
cli.add_command(events)


if __name__ == "__main__":
    cli()
