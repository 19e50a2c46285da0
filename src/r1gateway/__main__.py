"""
__main__.py — r1gateway Entry Point

Usage:
    python -m r1gateway                         # listen on 0.0.0.0:18789
    python -m r1gateway --port 9000 --debug     # frame tracing, token logged
    python -m r1gateway --tailscale             # put the Tailscale IP in the QR
    python -m r1gateway --qr-file pair.svg      # also write the QR code to disk
    python -m r1gateway --config path/to/config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="r1gateway",
        description="r1gateway — self-hosted pairing and chat gateway for the Rabbit R1",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $R1GATEWAY_CONFIG or config/config.yaml)",
    )
    parser.add_argument("--host", default=None, help="Interface to bind (default from config)")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (default 18789)")
    parser.add_argument(
        "--token",
        default=None,
        help="Gateway token (default: $R1_GATEWAY_TOKEN, else generated at startup)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Log every inbound/outbound frame and the gateway token",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    parser.add_argument(
        "--tailscale",
        action="store_true",
        default=None,
        help="Probe the tailscale CLI and list its address first in the QR payload",
    )
    parser.add_argument(
        "--qr-file",
        default=None,
        help="Write the pairing QR code as an SVG file",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if config.yaml has
    invalid values or validate_all() finds cross-field problems.
    """
    from pydantic import ValidationError

    from r1gateway.config.settings import ConfigError, load_settings
    from r1gateway.observability.logger import get_logger, setup_logging

    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError) as exc:
        print(f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n", file=sys.stderr)
        sys.exit(1)

    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    log_level = args.log_level or settings.log_level
    if args.debug and not args.log_level:
        log_level = "DEBUG"

    setup_logging(
        level=log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )

    return settings, get_logger("r1gateway.main")


def _print_pairing(console: Console, payload: dict, show_token: bool) -> None:
    from r1gateway.pairing.qr import print_qr_ascii

    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column(style="bold cyan")
    table.add_column()
    table.add_row("Addresses", ", ".join(payload["ips"]) or "(none found)")
    table.add_row("Port", str(payload["port"]))
    table.add_row("Token", payload["token"] if show_token else "(hidden — run with --debug)")

    console.print(Panel(
        table,
        title="🐇 r1gateway — scan to pair",
        box=box.DOUBLE,
        border_style="bright_cyan",
    ))
    print_qr_ascii(payload, out=console.file)


async def run(args: argparse.Namespace) -> int:
    from r1gateway.exceptions import GatewayStartError, QRRenderError
    from r1gateway.gateway.gateway_server import RabbitGateway
    from r1gateway.pairing.network import discover_ips
    from r1gateway.pairing.qr import render_qr_svg

    settings, log = bootstrap(args)
    console = Console()

    gateway = RabbitGateway.from_settings(
        settings,
        host=args.host,
        port=args.port,
        token=args.token,
        debug=args.debug,
        use_tailscale=args.tailscale,
    )

    @gateway.on_device_connected
    def _connected(event):
        console.print(f"[green]>>> Device connected: {event.id} ({event.remote})[/]")

    @gateway.on_device_disconnected
    def _disconnected(event):
        console.print(f"[yellow]<<< Device disconnected: {event.id}[/]")

    @gateway.on_message
    def _message(event):
        console.print(f"[dim][{event.device_id}][/] {event.text}")

    @gateway.on_error
    def _error(event):
        console.print(f"[red]Transport error from {event.remote}: {event.error}[/]")

    try:
        await gateway.start()
    except GatewayStartError as exc:
        log.error("r1gateway.startup_failed", reason=str(exc))
        print(f"\n❌  {exc}\n", file=sys.stderr)
        return 1

    ips = await discover_ips(
        settings.pairing.use_tailscale if args.tailscale is None else args.tailscale,
        settings.pairing.tailscale_commands,
    )
    payload = gateway.pairing_payload(ips)
    try:
        _print_pairing(console, payload, show_token=bool(settings.gateway.debug or args.debug))
        if args.qr_file:
            Path(args.qr_file).write_bytes(render_qr_svg(payload))
            console.print(f"[dim]QR code written to {args.qr_file}[/]")
    except QRRenderError as exc:
        log.warning("r1gateway.qr_failed", reason=str(exc))

    try:
        await gateway.wait_closed()
    finally:
        await gateway.shutdown()
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\nShutting down.", file=sys.stderr)
        return 0


if __name__ == "__main__":
    sys.exit(main())
