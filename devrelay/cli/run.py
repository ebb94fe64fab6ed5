"""Call, burst and check commands for devrelay CLI."""

import asyncio
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from devrelay.core.burst import BurstDispatcher, RequestSpec
from devrelay.core.cancellation import CancellationToken
from devrelay.core.checks import run_smoke_checks
from devrelay.core.errors import CancellationError, NetworkError, UpstreamError
from devrelay.core.retry import ResilientClient, RetryPolicy
from devrelay.utils.helpers import (
    format_bytes,
    format_status,
    join_url,
    parse_header_options,
    truncate_text,
)

console = Console()


def _is_textual(content_type: str) -> bool:
    """Bodies worth printing; anything else is reported by size."""
    media_type = content_type.split(";", 1)[0].strip().lower()
    if not media_type:
        return True
    return (
        media_type.startswith("text/")
        or media_type.endswith("json")
        or media_type.endswith("+xml")
        or media_type in ("application/xml", "application/javascript")
    )


def _request_headers(settings, header_options, api_key):
    try:
        headers = parse_header_options(header_options)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)
    key = api_key or settings.api_key
    if key:
        headers.setdefault("x-api-key", key)
    return headers


@click.command()
@click.argument("path")
@click.option("--method", "-X", default="GET", help="HTTP method (default: GET)")
@click.option("--data", "-d", default=None, help="Request body")
@click.option("--header", "-H", "header_options", multiple=True, help="Extra header 'Name: value'")
@click.option("--attempts", type=int, help="Total attempts (default from settings: 3)")
@click.option("--base-delay", type=float, help="First retry delay in seconds (default: 0.4)")
@click.option("--timeout", type=float, default=None, help="Abort the call after this many seconds")
@click.option("--api-key", envvar="API_KEY", help="Sent as x-api-key (can also use API_KEY env var)")
@click.pass_context
def call(ctx, path, method, data, header_options, attempts, base_delay, timeout, api_key):
    """Send one request through the relay, retrying 5xx and network failures.

    Examples:

        \b
        devrelay call /api/flaky
        devrelay call /api/slow?ms=2000 --timeout 0.8
        devrelay call /api/echo -X POST -d "hello"
        devrelay call /api/bytes?kb=256
    """
    settings = ctx.obj.get("settings")
    policy = RetryPolicy(
        max_attempts=attempts or settings.retry_attempts,
        base_delay=base_delay if base_delay is not None else settings.retry_base_delay,
    )
    headers = _request_headers(settings, header_options, api_key)
    url = join_url(settings.proxy_url, path)

    async def _run():
        token = CancellationToken(timeout=timeout) if timeout else None
        async with ResilientClient(policy=policy) as client:
            return await client.call(
                method.upper(), url, token=token, headers=headers,
                content=data.encode("utf-8") if data is not None else None,
            )

    try:
        response = asyncio.run(_run())
    except CancellationError as e:
        console.print(f"[yellow]Aborted: {escape(str(e))}[/yellow]")
        sys.exit(3)
    except UpstreamError as e:
        console.print(f"[red]Failed after {policy.max_attempts} attempts: {escape(str(e))}[/red]")
        sys.exit(1)
    except NetworkError as e:
        console.print(f"[red]Network error after {policy.max_attempts} attempts: {escape(str(e))}[/red]")
        sys.exit(1)

    if not response.content:
        body = "[dim](empty body)[/dim]"
    elif _is_textual(response.headers.get("content-type", "")):
        body = escape(response.text)
    else:
        size = len(response.content)
        body = f"downloaded {size} bytes ({format_bytes(size)})"

    console.print(Panel(
        body,
        title=f"{method.upper()} {path} -> {format_status(response.status_code)}",
        border_style="blue",
    ))


@click.command()
@click.argument("path", default="/api/hello?name={i}")
@click.option("-n", "count", default=15, type=int, help="Number of concurrent calls (default: 15)")
@click.option("--method", "-X", default="GET", help="HTTP method (default: GET)")
@click.option("--header", "-H", "header_options", multiple=True, help="Extra header 'Name: value'")
@click.option("--api-key", envvar="API_KEY", help="Sent as x-api-key")
@click.pass_context
def burst(ctx, path, count, method, header_options, api_key):
    """Fire N calls at once and show every outcome in dispatch order.

    '{i}' in PATH is replaced with the call index.
    """
    settings = ctx.obj.get("settings")
    template = RequestSpec(
        url=join_url(settings.proxy_url, path),
        method=method.upper(),
        headers=_request_headers(settings, header_options, api_key),
    )

    async def _run():
        dispatcher = BurstDispatcher()
        try:
            return await dispatcher.burst(count, template)
        finally:
            await dispatcher.close()

    results = asyncio.run(_run())

    table = Table(title=f"Burst {count}", show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Status", justify="center")
    table.add_column("Body / Error")
    for result in results:
        if result.failed:
            table.add_row(str(result.index), "[red]ERR[/red]", f"[red]{escape(result.error)}[/red]")
        else:
            table.add_row(str(result.index), format_status(result.status_code), escape(result.summary))

    counts = {}
    for result in results:
        key = "ERR" if result.failed else str(result.status_code)
        counts[key] = counts.get(key, 0) + 1

    console.print("\n")
    console.print(table)
    console.print("  " + ", ".join(f"{k}: {v}" for k, v in sorted(counts.items())))
    console.print("\n")


@click.command()
@click.option("--origin", default=None, help="Origin to check (default: configured backend)")
@click.pass_context
def check(ctx, origin):
    """Run the server-side smoke checks straight against the origin."""
    settings = ctx.obj.get("settings")
    base_url = origin or settings.backend_internal_url

    results = asyncio.run(run_smoke_checks(base_url))

    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Check", style="green")
    table.add_column("Result")
    for result in results:
        if result.failed:
            table.add_row(result.url, f"[red]ERR: {escape(result.error)}[/red]")
        else:
            table.add_row(result.url, escape(truncate_text(result.summary, 120)))

    console.print(Panel(table, title=f"Smoke checks: {base_url}", border_style="blue"))
    if any(r.failed or not r.ok for r in results):
        sys.exit(1)
