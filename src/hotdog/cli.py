import asyncio
import signal

import aiohttp
import typer
from rich.console import Console
from rich.table import Table

from hotdog.config import (
    FASTAPI_HOST,
    FASTAPI_PORT,
    PROBE_DELAY_SECONDS,
    REMOTE_DEBUG_PORT,
    TAB_CHECK_INTERVAL_SECONDS,
)
from hotdog.enabled_hosts import EnabledHosts
from hotdog.fastapi_server import serve as serve_http
from hotdog.page.soup_document import SoupDocument
from hotdog.poller import Poller
from hotdog.service import HotdogService
from hotdog.tab_watcher import TabWatcher
from hotdog.utils.logger import logger
from hotdog.utils.urls import tab_host
from hotdog.utils.version import get_version
from hotdog.watch_registry import WatchRegistry

HEADLESS_TAB_ID = "headless"

app = typer.Typer(add_completion=False, help="hotdog: hot reload for local pages")

hosts_app = typer.Typer(help="Manage hosts with hot reload enabled")
app.add_typer(hosts_app, name="hosts")

console = Console()


def _install_stop_handlers(stop_event: asyncio.Event) -> None:
    def signal_handler(sig, frame):
        console.print(f"Signal {sig} received, shutting down...")
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def _normalize_host(value: str) -> str:
    if "://" not in value:
        value = f"http://{value}"
    return tab_host(value)


# --- serve ---


async def run_serve(host: str, port: int, debug_port: int, check_interval: float) -> None:
    stop_event = asyncio.Event()
    _install_stop_handlers(stop_event)

    service = HotdogService()
    watcher = TabWatcher(service, check_interval=check_interval, port=debug_port)

    if not await watcher.start_monitoring():
        console.print(
            f"[yellow]No browser on port {debug_port}; only the HTTP bridge is available.[/yellow]"
        )

    server_task = asyncio.create_task(serve_http(service, host, port), name="hotdog-http")
    stop_task = asyncio.create_task(stop_event.wait(), name="hotdog-stop")
    console.print(f"hotdog {get_version()} listening on http://{host}:{port}")
    console.print(f"[dim]Log: {logger.get_log_file_path()}[/dim]")

    try:
        await asyncio.wait({server_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (server_task, stop_task):
            if not task.done():
                task.cancel()
        await asyncio.gather(server_task, stop_task, return_exceptions=True)
        await watcher.stop_monitoring()
        await service.close()
        logger.info("Shutdown complete.")
        logger.mark_shutting_down()


@app.command("serve")
def serve_cmd(
    host: str = typer.Option(FASTAPI_HOST, "--host", help="HTTP bind address"),
    port: int = typer.Option(FASTAPI_PORT, "--port", help="HTTP port"),
    debug_port: int = typer.Option(
        REMOTE_DEBUG_PORT, "--debug-port", help="Chrome remote debugging port"
    ),
    check_interval: float = typer.Option(
        TAB_CHECK_INTERVAL_SECONDS, "--check-interval", help="Seconds between tab list polls"
    ),
) -> None:
    """Watch local tabs in Chrome and serve the HTTP bridge."""
    try:
        asyncio.run(run_serve(host, port, debug_port, check_interval))
    except KeyboardInterrupt:
        logger.info("Program terminated by user.")


# --- watch ---


async def run_watch(url: str, probe_delay: float) -> int:
    stop_event = asyncio.Event()
    _install_stop_handlers(stop_event)

    service = HotdogService(registry=WatchRegistry(poller=Poller(), probe_delay=probe_delay))

    async with aiohttp.ClientSession() as http:

        async def load() -> str:
            async with http.get(url) as response:
                response.raise_for_status()
                return await response.text()

        try:
            html = await load()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            console.print(f"[red]Could not load {url}: {e}[/red]")
            await service.close()
            return 1

        # Watching a page from the command line switches its host on
        service.hosts.enable(tab_host(url))
        session = await service.open_tab(HEADLESS_TAB_ID, SoupDocument(html, url, loader=load))
        urls = session.client.registry.urls()
        console.print(f"Watching {len(urls)} resource(s) for {url}")
        console.print(f"[dim]Log: {logger.get_log_file_path()}[/dim]")
        for resource_url in urls:
            console.print(f"  [dim]{resource_url}[/dim]")

        try:
            await stop_event.wait()
        finally:
            await service.close()
    return 0


@app.command("watch")
def watch_cmd(
    url: str = typer.Argument(..., help="Page to watch, e.g. http://localhost:3000/"),
    probe_delay: float = typer.Option(
        PROBE_DELAY_SECONDS, "--probe-delay", help="Seconds between probes of one resource"
    ),
) -> None:
    """Watch a page's assets without a browser; swaps and reloads go to the session log."""
    try:
        code = asyncio.run(run_watch(url, probe_delay))
    except KeyboardInterrupt:
        code = 0
    raise typer.Exit(code=code)


# --- hosts ---


@hosts_app.command("list")
def hosts_list() -> None:
    hosts = EnabledHosts().hosts()
    if not hosts:
        console.print("No hosts enabled.")
        return
    table = Table("Host", "Enabled at (ms)")
    for host, stamp in sorted(hosts.items()):
        table.add_row(host, stamp)
    console.print(table)


@hosts_app.command("enable")
def hosts_enable(host: str = typer.Argument(..., help="Origin, e.g. localhost:3000")) -> None:
    origin = _normalize_host(host)
    if not EnabledHosts().enable(origin):
        console.print("[red]Could not save hosts file[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Enabled {origin}[/green]")


@hosts_app.command("disable")
def hosts_disable(host: str = typer.Argument(..., help="Origin, e.g. localhost:3000")) -> None:
    origin = _normalize_host(host)
    if not EnabledHosts().disable(origin):
        console.print("[red]Could not save hosts file[/red]")
        raise typer.Exit(code=1)
    console.print(f"Disabled {origin}")
