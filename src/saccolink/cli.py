"""saccolink CLI - sign, verify and probe Bitnob API requests."""

import asyncio
import json
import shlex
import sys
from collections.abc import Callable, Coroutine
from functools import wraps
from typing import Any, NoReturn, ParamSpec, TypeVar

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from saccolink.client import BitnobClient
from saccolink.common.errors import ConfigurationError, NetworkError, SaccolinkError
from saccolink.common.logging import setup_logging
from saccolink.common.settings import Settings, get_settings
from saccolink.probe import (
    DEFAULT_BASE_URLS,
    DEFAULT_ENDPOINTS,
    EndpointProber,
    ProbeResult,
    summarize,
)
from saccolink.signer import (
    RequestSigner,
    SignedRequest,
    current_timestamp_ms,
    generate_nonce,
    serialize_body,
)
from saccolink.verifier import RequestVerifier

console = Console()

P = ParamSpec("P")
R = TypeVar("R")


def async_command(f: Callable[P, Coroutine[Any, Any, R]]) -> Callable[P, R]:
    """Decorator to run async commands."""

    @wraps(f)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        return asyncio.run(f(*args, **kwargs))

    return wrapper


def mask_secret(value: str | None, visible: int = 6) -> str:
    """Show the first few characters of a secret."""
    if not value:
        return "NOT SET"
    if len(value) <= visible:
        return "*" * len(value)
    return f"{value[:visible]}...({len(value)} chars)"


def _fail(message: str) -> NoReturn:
    console.print(f"[red]{escape(message)}[/red]")
    sys.exit(1)


def _parse_json(data: str | None) -> Any:
    if data is None:
        return None
    try:
        return json.loads(data)
    except json.JSONDecodeError as exc:
        _fail(f"Invalid JSON body: {exc}")


@click.group()
@click.option("--log-level", default=None, help="Log level (defaults to BITNOB_LOG_LEVEL)")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """saccolink CLI - signed requests for the Bitnob API."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level, json_format=settings.log_json)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


# === Configuration ===


@cli.command("check-config")
@click.pass_context
def check_config(ctx: click.Context) -> None:
    """Show which credentials are configured."""
    settings: Settings = ctx.obj["settings"]

    table = Table(title="Bitnob Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("BITNOB_BASE_URL", settings.base_url or "[red]NOT SET[/red]")
    table.add_row("BITNOB_CLIENT_ID", settings.client_id or "[red]NOT SET[/red]")
    table.add_row("BITNOB_SECRET_KEY", mask_secret(settings.secret_key))
    table.add_row("Client header", "on" if settings.include_client_header else "off")
    table.add_row("Message framing", settings.message_framing)
    table.add_row("Replay tolerance (ms)", str(settings.replay_tolerance_ms))
    console.print(table)

    missing = settings.missing_credentials()
    if missing:
        console.print("[red]Configuration issues:[/red]")
        for name in missing:
            console.print(f"[red]  - {name} missing[/red]")
        sys.exit(1)
    console.print("[green]All credentials are configured[/green]")


# === Signing ===


@cli.command("sign")
@click.option("--method", "-X", default="GET", help="HTTP method")
@click.option("--path", "-p", default="/wallets", help="Request path (no host or query)")
@click.option("--body", "-d", default=None, help="Raw request body")
@click.option("--timestamp", type=int, default=None, help="Epoch milliseconds (default: now)")
@click.option("--nonce", default=None, help="Hex nonce (default: random)")
@click.pass_context
def sign_command(
    ctx: click.Context,
    method: str,
    path: str,
    body: str | None,
    timestamp: int | None,
    nonce: str | None,
) -> None:
    """Sign a request and print its headers and a curl command."""
    settings: Settings = ctx.obj["settings"]
    try:
        signer = RequestSigner.from_settings(settings)
        request = SignedRequest(
            method=method.upper(),
            path=path,
            timestamp=timestamp if timestamp is not None else current_timestamp_ms(),
            nonce=nonce or generate_nonce(settings.nonce_bytes),
            body=serialize_body(body),
        )
        headers = signer.build_auth_headers(request)
    except (SaccolinkError, ValueError) as exc:
        _fail(f"Error: {exc}")

    console.print(f"[cyan]Message:[/cyan] {request.message(signer.framing).decode('utf-8')}")
    console.print(f"[cyan]Signature:[/cyan] {headers['x-auth-signature']}")

    table = Table(title="Headers")
    table.add_column("Header", style="cyan")
    table.add_column("Value")
    for name, value in headers.items():
        table.add_row(name, value)
    console.print(table)

    base_url = settings.base_url or "<BITNOB_BASE_URL>"
    parts = ["curl", "-X", request.method]
    for name, value in headers.items():
        parts += ["-H", f"{name}: {value}"]
    if request.body:
        parts += ["--data", str(request.body)]
    parts.append(f"{base_url.rstrip('/')}{path}")
    console.print(" ".join(shlex.quote(part) for part in parts), soft_wrap=True)


@cli.command("verify")
@click.option("--method", "-X", default="GET", help="HTTP method")
@click.option("--path", "-p", required=True, help="Request path")
@click.option("--timestamp", type=int, required=True, help="x-auth-timestamp value")
@click.option("--nonce", required=True, help="x-auth-nonce value")
@click.option("--signature", required=True, help="x-auth-signature value")
@click.option("--body", "-d", default="", help="Raw request body")
@click.option("--tolerance-ms", type=int, default=None, help="Replay window (default from settings)")
@click.pass_context
def verify_command(
    ctx: click.Context,
    method: str,
    path: str,
    timestamp: int,
    nonce: str,
    signature: str,
    body: str,
    tolerance_ms: int | None,
) -> None:
    """Verify a signature against the configured secret."""
    settings: Settings = ctx.obj["settings"]
    try:
        verifier = RequestVerifier(
            settings.secret_key,
            tolerance_ms=tolerance_ms or settings.replay_tolerance_ms,
            framing=settings.message_framing,
        )
    except ConfigurationError as exc:
        _fail(f"Error: {exc}")

    request = SignedRequest(
        method=method.upper(),
        path=path,
        timestamp=timestamp,
        nonce=nonce,
        body=body,
    )
    result = verifier.verify(request, signature)
    if result:
        console.print("[green]✓ Signature verified[/green]")
        return
    assert result.reason is not None
    _fail(f"✗ Rejected ({result.reason.value}): {result.detail}")


# === API Calls ===


@cli.command("request")
@click.argument("method")
@click.argument("path")
@click.option("--data", "-d", default=None, help="JSON body")
@click.pass_context
@async_command
async def request_command(ctx: click.Context, method: str, path: str, data: str | None) -> None:
    """Send a signed request and print the response."""
    settings: Settings = ctx.obj["settings"]
    payload = _parse_json(data)
    try:
        async with BitnobClient(settings) as client:
            response = await client.request(method, path, json_body=payload)
    except ConfigurationError as exc:
        _fail(f"Configuration error: {exc}")
    except NetworkError as exc:
        hint = " (outcome unknown - check state before resending)" if exc.outcome_unknown else ""
        _fail(f"Network error: {exc}{hint}")

    colour = "green" if response.ok else "red"
    console.print(f"[{colour}]Status: {response.status} {response.reason}[/{colour}]")
    body = response.data if response.ok else response.error
    if body is not None:
        if isinstance(body, str):
            console.print(body)
        else:
            console.print_json(json.dumps(body))
    if response.status in (401, 403):
        console.print("[yellow]Authentication rejected - check credentials and clock skew[/yellow]")
    if not response.ok:
        sys.exit(1)


def _print_probe_results(title: str, results: list[ProbeResult]) -> None:
    table = Table(title=title)
    table.add_column("Base URL", style="cyan")
    table.add_column("Endpoint", style="cyan")
    table.add_column("Status")
    table.add_column("Note")

    for result in results:
        style = "green" if result.available else "dim"
        table.add_row(
            result.base_url,
            result.path,
            str(result.status_code) if result.status_code is not None else "-",
            f"[{style}]{result.note}[/{style}]",
        )
    console.print(table)

    counts = summarize(results)
    found = sum(1 for result in results if result.available)
    console.print(f"Total available: {found} of {len(results)} {counts}")


def _client_factory(settings: Settings) -> Callable[[str | None], BitnobClient]:
    def factory(base_url: str | None) -> BitnobClient:
        return BitnobClient(settings, base_url=base_url)

    return factory


@cli.command("probe")
@click.option("--endpoint", "-e", "endpoints", multiple=True, help="Endpoint path (repeatable)")
@click.option("--delay", type=float, default=None, help="Seconds between probes")
@click.pass_context
@async_command
async def probe_command(ctx: click.Context, endpoints: tuple[str, ...], delay: float | None) -> None:
    """Probe endpoints on the configured base URL."""
    settings: Settings = ctx.obj["settings"]
    prober = EndpointProber(
        _client_factory(settings),
        delay_seconds=settings.probe_delay_seconds if delay is None else delay,
    )
    try:
        results = await prober.probe_endpoints(endpoints or DEFAULT_ENDPOINTS)
    except ConfigurationError as exc:
        _fail(f"Configuration error: {exc}")
    _print_probe_results("Endpoint Probe", results)


@cli.command("probe-bases")
@click.option("--base-url", "-b", "base_urls", multiple=True, help="Candidate base URL (repeatable)")
@click.option("--path", "-p", default="/wallets", help="Path to probe on each base URL")
@click.option("--delay", type=float, default=None, help="Seconds between probes")
@click.pass_context
@async_command
async def probe_bases_command(
    ctx: click.Context,
    base_urls: tuple[str, ...],
    path: str,
    delay: float | None,
) -> None:
    """Probe one path across candidate API base URLs."""
    settings: Settings = ctx.obj["settings"]
    prober = EndpointProber(
        _client_factory(settings),
        delay_seconds=settings.probe_delay_seconds if delay is None else delay,
    )
    try:
        results = await prober.probe_base_urls(base_urls or DEFAULT_BASE_URLS, path=path)
    except ConfigurationError as exc:
        _fail(f"Configuration error: {exc}")
    _print_probe_results("Base URL Probe", results)


# === Sandbox ===


@cli.command("serve")
@click.option("--host", default=None, help="Bind host")
@click.option("--port", type=int, default=None, help="Bind port")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the sandbox verifier server."""
    import uvicorn

    from saccolink.sandbox.main import create_app

    settings: Settings = ctx.obj["settings"]
    uvicorn.run(
        create_app(settings),
        host=host or settings.sandbox_host,
        port=port or settings.sandbox_port,
        log_level="info",
    )


def main() -> None:
    """CLI entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
