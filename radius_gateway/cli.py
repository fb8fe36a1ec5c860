"""Console entrypoint for the RADIUS gateway."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import signal
import sys

from prometheus_client import start_http_server

from radius_gateway.auth.local import hash_password
from radius_gateway.config import GatewayConfig
from radius_gateway.exceptions import ConfigurationError
from radius_gateway.radius.dispatcher import RequestDispatcher
from radius_gateway.utils.logger import configure, get_logger

logger = get_logger(__name__)


def build_dispatcher(config: GatewayConfig) -> RequestDispatcher:
    radius = config.get_radius_config()
    return RequestDispatcher(
        config.create_auth_backend(),
        config.create_client_registry(),
        host=radius["host"],
        port=radius["port"],
        workers=radius["workers"],
        backend_timeout=radius["backend_timeout"],
        shutdown_timeout=radius["shutdown_timeout"],
        require_message_authenticator=radius["require_message_authenticator"],
        reject_reply_message=radius["reject_reply_message"],
    )


async def serve(
    config: GatewayConfig, stop_event: asyncio.Event | None = None
) -> None:
    """Run the dispatcher until ``stop_event`` is set or SIGINT/SIGTERM arrives."""
    stop_ev = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()

    # Signal handling: POSIX only; tolerate environments where it's unavailable
    try:
        loop.add_signal_handler(signal.SIGTERM, stop_ev.set)
        loop.add_signal_handler(signal.SIGINT, stop_ev.set)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers not available on this platform")

    metrics = config.get_metrics_config()
    if metrics["enabled"]:
        start_http_server(metrics["port"], addr=metrics["host"])
        logger.info(
            "Metrics endpoint started",
            event="service.metrics.start",
            host=metrics["host"],
            port=metrics["port"],
        )

    dispatcher = build_dispatcher(config)
    try:
        async with dispatcher:
            await stop_ev.wait()
    finally:
        # Timed-out calls may still be using the backend (e.g. its HTTP session)
        still_running = await dispatcher.wait_backend_idle(dispatcher.shutdown_timeout)
        if still_running:
            logger.warning(
                "Closing backend with calls still running",
                event="service.backend.busy",
                count=still_running,
            )
        dispatcher.backend.close()
        logger.info(
            "RADIUS gateway statistics at shutdown",
            event="service.stats",
            stats=dispatcher.get_stats(),
        )


def cmd_serve(args: argparse.Namespace) -> int:
    try:
        config = GatewayConfig(args.config)
    except ConfigurationError as exc:
        logger.error("Failed to load configuration", error=exc.message)
        return 2
    level = args.log_level or config.get_logging_config()["level"]
    configure(level=level)
    logger.info(
        "Starting radius-gateway",
        event="service.configured",
        config=config.get_config_summary(),
    )
    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        pass
    except (ConfigurationError, OSError) as exc:
        logger.error("Failed to start radius-gateway", error=str(exc))
        return 1
    return 0


def cmd_check_config(args: argparse.Namespace) -> int:
    try:
        config = GatewayConfig(args.config)
    except ConfigurationError as exc:
        print(f"Configuration validation failed: {exc.message}", file=sys.stderr)
        return 1
    print(f"Configuration is valid ({config.config_file})")
    return 0


def cmd_hash_password(args: argparse.Namespace) -> int:
    password = args.password
    if not password:
        if args.stdin:
            password = sys.stdin.readline().rstrip("\n")
        else:
            password = getpass.getpass("Enter password: ")
            confirm = getpass.getpass("Confirm password: ")
            if password != confirm:
                print("Passwords do not match", file=sys.stderr)
                return 1
    try:
        print(hash_password(password, rounds=args.rounds))
    except ValueError as exc:
        print(f"Failed to generate bcrypt hash: {exc}", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="radius-gateway",
        description="RADIUS authentication gateway",
    )
    p.add_argument(
        "--config",
        "-c",
        default=None,
        help="Path to config file (default: $RADIUS_GATEWAY_CONFIG or config/radius-gateway.conf)",
    )
    p.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Override [logging] level",
    )
    p.set_defaults(func=cmd_serve)
    sub = p.add_subparsers(dest="cmd")

    sub_serve = sub.add_parser("serve", help="Serve RADIUS requests (default)")
    sub_serve.set_defaults(func=cmd_serve)

    sub_check = sub.add_parser("check-config", help="Validate configuration and exit")
    sub_check.set_defaults(func=cmd_check_config)

    sub_hash = sub.add_parser(
        "hash-password", help="Print a bcrypt hash for the [local] section"
    )
    sub_hash.add_argument("--password", help="Password (prompted when omitted)")
    sub_hash.add_argument(
        "--stdin", action="store_true", help="Read the password from stdin"
    )
    sub_hash.add_argument("--rounds", type=int, default=12, help="bcrypt cost factor")
    sub_hash.set_defaults(func=cmd_hash_password)
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure(level=args.log_level or "INFO")
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
