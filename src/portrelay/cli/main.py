"""
PortRelay CLI entry point.

Usage:
    portrelay [OPTIONS] COMMAND [ARGS]...

Commands:
    run       Run the port forwarder
    check     Show the resolved tunnel configuration
    version   Show version information

Tunnels are read from TUNNEL_1, TUNNEL_2, ... environment variables
(LOCAL_ADDR>REMOTE_ADDR) and from repeated --tunnel options.
"""

import asyncio
import signal
from typing import Annotated

import typer
from rich.table import Table

from portrelay.cli.output import console, print_error, print_success
from portrelay.config import config, load_tunnel_specs
from portrelay.exceptions import NoTunnelsError, RelayError
from portrelay.models.enums import FailurePolicy, LogLevel
from portrelay.models.tunnel import TunnelSpec
from portrelay.relay.server import TunnelRelay
from portrelay.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

app = typer.Typer(
    name="portrelay",
    help="TCP port forwarder",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

TunnelOption = Annotated[
    list[str] | None,
    typer.Option(
        "--tunnel",
        "-t",
        help="Tunnel as LOCAL_ADDR>REMOTE_ADDR (repeatable, added to TUNNEL_* vars)",
    ),
]


async def _serve(specs: list[TunnelSpec], drain: bool) -> None:
    """
    Run the relay with signal handling.

    The first SIGINT/SIGTERM stops admission; a second one aborts tunnels
    that are still open.
    """
    relay = TunnelRelay(specs)
    loop = asyncio.get_running_loop()
    abort_tasks: set[asyncio.Task] = set()
    received = 0

    def handle_signal():
        nonlocal received
        received += 1
        if received == 1:
            relay.stop()
        else:
            task = loop.create_task(relay.close_sessions())
            abort_tasks.add(task)
            task.add_done_callback(abort_tasks.discard)

    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, handle_signal)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Signal handlers are unavailable (e.g. Windows event loops)
            pass

    try:
        try:
            await relay.run()
        except RelayError:
            await relay.close_sessions()
            raise

        open_tunnels = relay.dispatcher.active_sessions
        if drain and open_tunnels:
            logger.info(
                f"Waiting for {open_tunnels} open tunnels to close "
                "(signal again to abort)."
            )
            await relay.wait_sessions()
        else:
            await relay.close_sessions()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)

    logger.info("All tunnels closed.")


@app.command("run")
def run_relay(
    tunnels: TunnelOption = None,
    queue_size: Annotated[
        int,
        typer.Option(
            "--queue-size",
            "-q",
            min=1,
            help="Accepted connections waiting for dispatch",
            envvar="PORTRELAY_QUEUE_SIZE",
        ),
    ] = config.INTAKE_QUEUE_SIZE,
    policy: Annotated[
        FailurePolicy,
        typer.Option(
            "--policy",
            help="What a listener failure does to the other tunnels",
            envvar="PORTRELAY_FAILURE_POLICY",
        ),
    ] = config.FAILURE_POLICY,
    log_level: Annotated[
        LogLevel,
        typer.Option("--log-level", "-l", envvar="PORTRELAY_LOG_LEVEL"),
    ] = config.LOG_LEVEL,
    drain: Annotated[
        bool,
        typer.Option(
            "--drain/--no-drain",
            help="Wait for open tunnels to close after a stop signal",
        ),
    ] = True,
):
    """Run the port forwarder until interrupted."""
    config.INTAKE_QUEUE_SIZE = queue_size
    config.FAILURE_POLICY = policy
    config.LOG_LEVEL = log_level
    configure_logging(config.LOG_LEVEL)

    specs = load_tunnel_specs(extra=tunnels or [])
    if not specs:
        logger.critical(f"FATAL: {NoTunnelsError()}")
        raise typer.Exit(1)

    try:
        asyncio.run(_serve(specs, drain))
    except RelayError as e:
        logger.critical(f"FATAL: failed to listen: {e}")
        raise typer.Exit(1)


@app.command("check")
def check_config(tunnels: TunnelOption = None):
    """Resolve the tunnel configuration and print it."""
    specs = load_tunnel_specs(extra=tunnels or [])
    if not specs:
        print_error(str(NoTunnelsError()))
        raise typer.Exit(1)

    table = Table(title="Tunnels")
    table.add_column("#", justify="right")
    table.add_column("Network")
    table.add_column("Local", style="cyan")
    table.add_column("Remote", style="yellow")
    for index, spec in enumerate(specs, start=1):
        table.add_row(str(index), spec.network, spec.local_address, spec.remote_address)
    console.print(table)
    print_success(f"{len(specs)} tunnel(s) configured.")


@app.command("version")
def version():
    """Show version information."""
    from portrelay import __version__

    console.print(f"PortRelay v{__version__}")


def run():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
