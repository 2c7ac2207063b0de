"""mediaproxy CLI - run and inspect the media fetch proxy."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

import mediaproxy
from mediaproxy import console as mp_console
from mediaproxy.channels import describe_rules
from mediaproxy.config import ProxyConfig, get_settings
from mediaproxy.exceptions import ConfigError
from mediaproxy.logging import configure_logging, get_logger, quiet_werkzeug
from mediaproxy.models import ProxyRequest
from mediaproxy.proxy import ProxyPipeline

# Configure logging early using env vars directly; the -v/-vv and
# --log-format flags in main_callback() may reconfigure later.
configure_logging(
    level=os.environ.get("MEDIAPROXY_LOG_LEVEL", "WARNING"),
    json_output=os.environ.get("MEDIAPROXY_LOG_FORMAT", "console") == "json",
)

LOG = get_logger(__name__)

app = typer.Typer(
    name="mediaproxy",
    help="""
    mediaproxy - fetch third-party media with browser headers and edge caching

    \b
    Quick start:
      mediaproxy serve                       Run the proxy server
      mediaproxy fetch <url> -v              Run one request through the pipeline
      mediaproxy channels                    Show active channel rules
      mediaproxy config                      Show current configuration
    """,
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = Console()

# Host used to build the inbound URL for one-off CLI requests.
_CLI_ORIGIN = "http://mediaproxy.local/"


def _load_config() -> ProxyConfig:
    try:
        return ProxyConfig.from_settings(get_settings())
    except ConfigError as exc:
        mp_console.error(str(exc))
        raise typer.Exit(1) from exc


def _parse_header_options(values: list[str] | None) -> dict[str, str]:
    headers: dict[str, str] = {}
    for header_str in values or []:
        if ":" not in header_str:
            raise typer.BadParameter(f"Invalid header format (expected 'Name: value'): {header_str}")
        name, _, value = header_str.partition(":")
        headers[name.strip()] = value.strip()
    return headers


@app.callback(invoke_without_command=True)
def main_callback(
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose",
            "-v",
            count=True,
            help="Increase verbosity (-v for info, -vv for debug)",
        ),
    ] = 0,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            help="Log output format: console (human-readable) or json (structured)",
        ),
    ] = None,
) -> None:
    """mediaproxy - fetch third-party media with browser headers and edge caching."""
    settings = get_settings()
    json_output = (log_format or settings.log_format) == "json"

    if verbose >= 2:
        configure_logging(level="DEBUG", json_output=json_output)
    elif verbose >= 1:
        configure_logging(level="INFO", json_output=json_output)
    elif log_format is not None:
        configure_logging(level=settings.log_level, json_output=json_output)


@app.command("version")
def version() -> None:
    """Show mediaproxy version."""
    console.print(
        Panel(
            f"[bold cyan]mediaproxy[/bold cyan] v{mediaproxy.__version__}",
            title="Media fetch proxy",
            border_style="cyan",
        )
    )


@app.command("serve")
def serve(
    host: Annotated[str | None, typer.Option("--host", help="Bind address")] = None,
    port: Annotated[int | None, typer.Option("--port", "-p", help="Listen port")] = None,
    debug: Annotated[bool, typer.Option("--debug", help="Enable Flask debug mode")] = False,
) -> None:
    """Run the proxy server."""
    from mediaproxy.server import build_pipeline, create_app

    settings = get_settings()
    try:
        pipeline = build_pipeline(settings)
    except ConfigError as exc:
        mp_console.error(str(exc))
        raise typer.Exit(1) from exc

    bind_host = host or settings.host
    bind_port = port or settings.port
    LOG.info(
        "server_starting",
        host=bind_host,
        port=bind_port,
        channels=[c.name for c in pipeline.config.channels],
        cache=pipeline.cache is not None,
    )
    mp_console.success(f"Serving on http://{bind_host}:{bind_port}/?url=<target>")
    quiet_werkzeug()
    create_app(pipeline).run(host=bind_host, port=bind_port, debug=debug, threaded=True)


@app.command("fetch")
def fetch(
    url: Annotated[str, typer.Argument(help="Target URL")],
    disposition: Annotated[
        str, typer.Option("--disposition", "-d", help="inline or attachment")
    ] = "attachment",
    ttl: Annotated[int | None, typer.Option("--ttl", help="Browser TTL override (seconds)")] = None,
    header: Annotated[
        list[str] | None,
        typer.Option("--header", "-H", help="Upstream header override(s), format 'Name: value'"),
    ] = None,
    range_header: Annotated[
        str | None, typer.Option("--range", help="Client Range header, e.g. 'bytes=0-1023'")
    ] = None,
    referer: Annotated[str | None, typer.Option("--referer", help="Client Referer header")] = None,
    output: Annotated[
        Path | None, typer.Option("--output", "-o", help="Write the response body to a file")
    ] = None,
) -> None:
    """Run one request through the proxy pipeline and show the response headers."""
    body: dict[str, object] = {"url": url, "disposition": disposition, "cache": False}
    if ttl is not None:
        body["ttl"] = ttl
    overrides = _parse_header_options(header)
    if overrides:
        body["headers"] = overrides

    client_headers = {"Content-Type": "application/json"}
    if range_header:
        client_headers["Range"] = range_header
    if referer:
        client_headers["Referer"] = referer

    pipeline = ProxyPipeline(_load_config())
    response = pipeline.handle_request(
        ProxyRequest(
            method="POST",
            url=_CLI_ORIGIN,
            headers=client_headers,
            body=json.dumps(body).encode("utf-8"),
        )
    )

    mp_console.status_line(response.status)
    mp_console.out_console.print(mp_console.headers_table(response.headers))

    if not response.ok:
        mp_console.error(response.read().decode("utf-8", errors="replace"))
        raise typer.Exit(1)

    if output is not None:
        written = 0
        with output.open("wb") as f:
            for chunk in response.iter_body():
                f.write(chunk)
                written += len(chunk)
        mp_console.success(f"Wrote {written} bytes to {output}")


@app.command("channels")
def channels(
    json_output: Annotated[bool, typer.Option("--json", help="Print rules as JSON")] = False,
) -> None:
    """Show the active channel rules in match order."""
    config = _load_config()
    if json_output:
        mp_console.out_console.print_json(json.dumps(describe_rules(config.channels)))
        return
    if not config.channels:
        console.print("[dim]No channel rules configured.[/dim]")
        return

    table = Table(
        title="Channel Rules",
        title_style="bold",
        header_style="bold cyan",
        border_style="dim",
    )
    table.add_column("#", style="dim")
    table.add_column("Channel", style="cyan")
    table.add_column("Domains", style="white")
    table.add_column("Headers", style="white")

    for position, rule in enumerate(config.channels, start=1):
        table.add_row(
            str(position),
            rule.name,
            ", ".join(rule.domains),
            "\n".join(f"{k}: {v}" for k, v in rule.headers.items()),
        )

    console.print(table)


@app.command("config")
def config() -> None:
    """Show current mediaproxy configuration."""
    settings = get_settings()

    channels_display = str(settings.channels_file) if settings.channels_file else "built-in"
    cache_display = (
        f"memory [dim](max {settings.cache_max_entries} entries, "
        f"{settings.cache_max_body_bytes} bytes each)[/dim]"
        if settings.cache_enabled
        else "disabled"
    )
    timeout_display = f"{settings.upstream_timeout}s" if settings.upstream_timeout else "none"

    info = f"""
[dim]Listen address:[/dim]     {settings.host}:{settings.port}
[dim]Allowed hosts:[/dim]      {", ".join(settings.allowed_hosts) or "(none)"}
[dim]Allowed referrers:[/dim]  {", ".join(settings.allowed_referrers) or "(none)"}
[dim]Channel rules:[/dim]      {channels_display}
[dim]Edge cache:[/dim]         {cache_display}
[dim]Upstream timeout:[/dim]   {timeout_display}
[dim]Log level:[/dim]          {settings.log_level}
[dim]Log format:[/dim]         {settings.log_format}"""

    console.print(Panel(info.strip(), title="Configuration", border_style="cyan"))


if __name__ == "__main__":
    app()
