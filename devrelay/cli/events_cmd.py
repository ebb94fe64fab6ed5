"""CLI command to watch a push-event stream through the relay."""

import asyncio

import click
from rich.console import Console
from rich.markup import escape

from devrelay.core.events import EventStreamConsumer, StreamState
from devrelay.utils.helpers import join_url

console = Console()


@click.command()
@click.argument("path", default="/api/sse")
@click.option("--duration", default=15.0, type=float, help="Seconds to listen before stopping (default: 15)")
@click.option("--event", "event_names", multiple=True, default=("tick",), help="Named events to print (default: tick)")
@click.pass_context
def events(ctx, path, duration, event_names):
    """Consume a push-event stream and print messages and named events.

    The stream is not reconnected after an error.
    """
    settings = ctx.obj.get("settings")
    url = join_url(settings.proxy_url, path)

    async def _run():
        finished = asyncio.Event()

        def on_state(state: StreamState) -> None:
            console.print(f"[dim]SSE: {state.value}[/dim]")
            if state in (StreamState.ERRORED, StreamState.CLOSED):
                finished.set()

        consumer = EventStreamConsumer(
            on_message=lambda frame: console.print(escape(frame.data)),
            on_error=lambda exc: console.print(f"[red]SSE error: {escape(str(exc))}[/red]"),
            on_state_change=on_state,
        )
        for name in event_names:
            consumer.add_handler(
                name, lambda frame, name=name: console.print(f"\\[{name}] {escape(frame.data)}"),
            )

        await consumer.start(url)
        try:
            await asyncio.wait_for(finished.wait(), timeout=duration)
        except asyncio.TimeoutError:
            pass
        finally:
            await consumer.close()
        return consumer.state

    asyncio.run(_run())
