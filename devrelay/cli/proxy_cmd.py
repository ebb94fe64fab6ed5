"""CLI command to start the devrelay proxy."""

import click

from devrelay.core.errors import ConfigurationError


@click.command()
@click.option("--port", default=3000, type=int, help="Port to listen on (default: 3000)")
@click.option("--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)")
@click.option(
    "--target", default=None,
    help="Backend origin (default: $BACKEND_INTERNAL_URL or http://backend-dev:8080)"
)
@click.option("--prefix", default=None, help="Routing prefix stripped before forwarding")
@click.option("--log-level", default="INFO", help="Log level (DEBUG, INFO, WARNING, ERROR)")
@click.pass_context
def serve(ctx, port, host, target, prefix, log_level):
    """Start the relay in front of the backend origin.

    \b
    Quickstart:
        export BACKEND_INTERNAL_URL=http://localhost:8080
        devrelay serve --port 3000
        curl http://localhost:3000/api/backend/api/hello?name=Dev
    """
    import logging
    logging.getLogger().setLevel(getattr(logging, log_level.upper(), logging.INFO))

    import uvicorn

    from devrelay.proxy.app import create_app

    settings = ctx.obj["settings"]
    updates = {}
    if target:
        updates["backend_internal_url"] = target
    if prefix:
        updates["route_prefix"] = prefix
    if updates:
        settings = settings.model_copy(update=updates)

    try:
        app = create_app(settings=settings)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo("devrelay - transparent HTTP relay")
    click.echo(f"  Origin:        {settings.get_target()}")
    click.echo(f"  Prefix:        {settings.route_prefix}")
    click.echo(f"  Listening on:  http://{host}:{port}{settings.route_prefix}/")
    click.echo()

    uvicorn.run(app, host=host, port=port, log_level=log_level.lower())
