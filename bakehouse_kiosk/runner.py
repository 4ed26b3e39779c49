"""
CLI entrypoint for the Bakehouse kiosk core.
"""
import asyncio

import typer
from rich.console import Console

from bakehouse_kiosk.client.api_client import ApiClient
from bakehouse_kiosk.client.payment_service import PaymentService
from bakehouse_kiosk.client.sse_client import EventStreamClient
from bakehouse_kiosk.client.visualizer import Visualizer
from bakehouse_kiosk.shared.config import STREAM_TOPICS, settings
from bakehouse_kiosk.shared.errors import ApiError, KioskError
from bakehouse_kiosk.shared.logging import configure_logging

app = typer.Typer(help="Bakehouse kiosk: backend, stream watcher, payment checker and kiosk shell")
console = Console()


@app.callback()
def main(log_level: str = typer.Option(settings.LOG_LEVEL, help="Log level for this run")):
    configure_logging(log_level)


@app.command()
def server():
    """Start the reference backend with Uvicorn."""
    import uvicorn
    typer.echo(f"Starting backend on port {settings.PORT}...")
    uvicorn.run("bakehouse_kiosk.server.main:app", host="0.0.0.0", port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


@app.command()
def watch(
    topic: str = typer.Option("orders", help=f"Stream topic: {', '.join(STREAM_TOPICS)}"),
    duration: float = typer.Option(0.0, help="Seconds to watch; 0 watches until Ctrl+C"),
    token: str = typer.Option(None, help="Bearer token for authenticated streams"),
):
    """Watch a live stream in the Rich dashboard."""
    if topic not in STREAM_TOPICS:
        typer.echo(f"Invalid topic. Choose one of: {', '.join(STREAM_TOPICS)}")
        raise typer.Exit(1)

    client = EventStreamClient(settings.stream_url(topic), token=token or settings.API_TOKEN)
    visualizer = Visualizer(client, topic)
    try:
        asyncio.run(visualizer.run(duration or None))
    except KeyboardInterrupt:
        pass


@app.command()
def pay(
    order_id: int = typer.Argument(..., help="Order to collect payment for"),
    amount: float = typer.Argument(..., help="Amount due"),
    interval: float = typer.Option(settings.payment_poll_interval_s, help="Seconds between status checks"),
    max_attempts: int = typer.Option(settings.PAYMENT_POLL_MAX_ATTEMPTS, help="Status checks before giving up"),
):
    """Create a payment QR for an order and wait until it is paid."""

    def show(status):
        console.print(f"[cyan]order {status.order_number}[/] payment_status=[bold]{status.payment_status}[/]")

    async def run():
        async with ApiClient() as api:
            payments = PaymentService(api)
            qr = await payments.create_payment_qr(order_id, amount)
            console.print(f"[bold]Scan to pay {qr.amount:.2f}[/] for {qr.order_number}")
            console.print(qr.qr_string)
            return await payments.poll_payment_status(order_id, show, max_attempts, interval)

    try:
        status = asyncio.run(run())
    except ApiError as e:
        console.print(f"[red bold]{e.message}[/]")
        raise typer.Exit(1)
    except KioskError as e:
        console.print(f"[yellow]{e}[/]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        raise typer.Exit(130)
    console.print(f"[green bold]Paid![/] order {status.order_number}")


@app.command()
def kiosk():
    """Run the kiosk shell: browser, watchdog and loopback bridge."""
    from bakehouse_kiosk.shell.app import KioskShell
    asyncio.run(KioskShell().run())


if __name__ == "__main__":
    app()
