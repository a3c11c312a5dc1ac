"""Main entry point for the push sync agent."""

import argparse
import asyncio
import logging
import os
import signal
import sys
from datetime import datetime
from typing import Optional

from .alerts import build_presenter
from .api_client import BackendClient
from .config import AppConfig, load_config, log_configuration
from .engine import SyncEngine
from .errors import PermissionDenied, SyncError
from .models import Message
from .realtime import SocketIOTransport

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool = False) -> None:
    log_level = "DEBUG" if verbose else os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def format_date(value: Optional[datetime]) -> str:
    """Short local date like 'Mar 5, 02:30 PM', or N/A."""
    if value is None:
        return "N/A"
    local = value.astimezone()
    return f"{local.strftime('%b')} {local.day}, {local.strftime('%I:%M %p')}"


def format_message(message: Message) -> str:
    lines = [
        f"[{message.status}] {message.title}  ({message.id})",
        f"    {message.body}",
        f"    {format_date(message.scheduled_at)}",
        f"    {message.category or '-'} • {message.priority or 'normal'} • {message.health_category or '-'}",
    ]
    return "\n".join(lines)


def _build_engine(config: AppConfig, client: BackendClient) -> SyncEngine:
    try:
        presenter = build_presenter(config.alerts)
    except PermissionDenied as e:
        logger.error(f"Local alerts unavailable ({e}); falling back to log alerts")
        config.alerts.method = "log"
        presenter = build_presenter(config.alerts)

    transport = None
    if config.realtime.enabled:
        transport = SocketIOTransport(config.realtime.url, event_name=config.realtime.event_name)

    return SyncEngine(
        fetch_messages=client.fetch_messages,
        presenter=presenter,
        poll_config=config.poll,
        transport=transport,
        fetch_timeout=config.api.request_timeout,
    )


async def run_agent(config: AppConfig) -> None:
    """Register the device, then keep messages in sync until interrupted."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass  # Windows: KeyboardInterrupt still ends asyncio.run

    async with BackendClient(config.api) as client:
        try:
            await client.register_device(config.device)
        except SyncError as e:
            logger.error(f"Device registration failed, continuing without it: {e}")

        engine = _build_engine(config, client)
        engine.subscribe(lambda snapshot: logger.info(f"Messages ({len(snapshot)})"))
        async with engine:
            logger.info(
                f"Polling for '{config.poll.alert_status}' messages every "
                f"{config.poll.interval_seconds:g}s; press Ctrl-C to stop"
            )
            await stop_event.wait()
        logger.info("Stopped.")


async def list_messages(config: AppConfig) -> None:
    async with BackendClient(config.api) as client:
        engine = _build_engine(config, client)
        snapshot = await engine.refresh()
    if not snapshot:
        print("No scheduled messages")
        return
    print(f"Messages ({len(snapshot)})")
    for message in snapshot:
        print(format_message(message))


async def register(config: AppConfig) -> None:
    async with BackendClient(config.api) as client:
        registration = await client.register_device(config.device)
    print(f"Device registered: {registration.device_id}")


async def test_send(config: AppConfig, title: str, body: str) -> None:
    async with BackendClient(config.api) as client:
        created = await client.send_test_message(title, body)
        engine = _build_engine(config, client)
        snapshot = await engine.refresh()
    print(f"Test notification sent ({created} created); {len(snapshot)} message(s) on the backend")


async def preview(config: AppConfig, message_id: str) -> None:
    async with BackendClient(config.api) as client:
        engine = _build_engine(config, client)
        await engine.refresh()
        message = await engine.preview(message_id)
    print(f"Presented: {message.title}")


async def health(config: AppConfig) -> None:
    async with BackendClient(config.api) as client:
        result = await client.check_health()
    print(f"Backend status: {result.get('status', 'unknown')}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Push message client that keeps messages in sync and alerts on new deliveries"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--alert-method",
        choices=["log", "sms", "email"],
        default=None,
        help="How to present local alerts (default: from ALERT_METHOD env var or 'log')",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Poll interval in seconds (overrides POLL_INTERVAL_SECONDS)",
    )

    commands = parser.add_subparsers(dest="command")
    commands.add_parser("run", help="Sync messages and alert until interrupted (default)")
    commands.add_parser("messages", help="Fetch and print the current messages")
    commands.add_parser("register", help="Register this device with the backend")
    send = commands.add_parser("test-send", help="Ask the backend to send a test notification")
    send.add_argument("--title", default="Push Sync Test")
    send.add_argument("--body", default="This is a test notification from the command-line client!")
    show = commands.add_parser("preview", help="Present one message as a local alert")
    show.add_argument("message_id")
    commands.add_parser("health", help="Check backend connectivity")
    return parser


def main(argv=None) -> None:
    """Main entry point with command-line argument parsing."""
    args = _build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    try:
        config = load_config(alert_method=args.alert_method)
        if args.interval is not None:
            if args.interval <= 0:
                raise ValueError(f"--interval must be positive, got {args.interval}")
            config.poll.interval_seconds = args.interval
        log_configuration(config)

        command = args.command or "run"
        if command == "run":
            asyncio.run(run_agent(config))
        elif command == "messages":
            asyncio.run(list_messages(config))
        elif command == "register":
            asyncio.run(register(config))
        elif command == "test-send":
            asyncio.run(test_send(config, args.title, args.body))
        elif command == "preview":
            asyncio.run(preview(config, args.message_id))
        elif command == "health":
            asyncio.run(health(config))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    except (SyncError, ValueError, KeyError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
