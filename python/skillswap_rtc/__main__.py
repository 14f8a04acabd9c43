"""
SkillSwap RTC entry point.

Usage:
    python -m skillswap_rtc serve
    python -m skillswap_rtc call --session <id> [--token <jwt> | --user <id>]
    python -m skillswap_rtc token --user <id>

Environment Variables:
    SKILLSWAP_AUTH_SECRET - JWT signing secret (server, and `--user` / `token`)
    SKILLSWAP_TOKEN - Caller token for `call`
    SKILLSWAP_SERVER_URL - Signaling server used by `call`
    SKILLSWAP_POLL_INTERVAL - Poll interval for `call` (seconds)
    SKILLSWAP_METRICS_PORT - Prometheus exporter port
    SKILLSWAP_LOG_LEVEL - Log level (DEBUG, INFO, WARNING, ERROR)
"""

import argparse
import asyncio
import os
import signal
import sys

from .api import CallerAuth, SignalingAPI
from .client import AiortcPeerConnection, HttpSignalingClient, NegotiationCoordinator
from .config import get_config, setup_logging
from .core import MediaUnavailable, SignalingError
from .metrics import configure_metrics

# Initialize logging
logger = setup_logging()


def _install_shutdown(shutdown_event: asyncio.Event) -> None:
    def signal_handler():
        logger.info("Shutdown requested...")
        shutdown_event.set()

    loop = asyncio.get_event_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda s, f: signal_handler())


async def serve() -> int:
    """Run the signaling API until interrupted."""
    config = get_config()

    if not config.auth_secret:
        logger.error("No auth secret configured.")
        logger.error("Set SKILLSWAP_AUTH_SECRET environment variable.")
        return 1

    configure_metrics(config.metrics_port).start()
    api = SignalingAPI.from_config(config)

    shutdown_event = asyncio.Event()
    _install_shutdown(shutdown_event)

    try:
        await api.start()
        await shutdown_event.wait()
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        return 1
    finally:
        await api.stop()
    return 0


def _resolve_token(args: argparse.Namespace) -> str:
    if args.token:
        return args.token
    if args.user:
        config = get_config()
        if not config.auth_secret:
            raise SystemExit("--user needs SKILLSWAP_AUTH_SECRET to mint a token")
        return CallerAuth(config.auth_secret, algorithm=config.auth_algorithm).issue_token(args.user)
    raise SystemExit("Provide --token (or SKILLSWAP_TOKEN) or --user")


async def call(args: argparse.Namespace) -> int:
    """Join the call for a booked session and stay in it until interrupted."""
    config = get_config()
    configure_metrics(config.metrics_port).start()

    transport = HttpSignalingClient(
        args.server or config.server_url,
        _resolve_token(args),
        timeout=config.request_timeout,
    )
    peer = AiortcPeerConnection(config.stun_urls, record_to=args.record)
    coordinator = NegotiationCoordinator(
        args.session,
        transport,
        peer,
        poll_interval=config.poll_interval,
        use_push=config.use_push and not args.poll,
        on_transport_state=lambda state: logger.info(f"Transport {state}"),
    )

    shutdown_event = asyncio.Event()
    _install_shutdown(shutdown_event)

    try:
        role = await coordinator.start()
        logger.info(f"Joined session {args.session} as {role.value}er")
        await shutdown_event.wait()
    except MediaUnavailable as e:
        logger.error(f"Camera/microphone unavailable: {e}")
        return 2
    except SignalingError as e:
        logger.error(f"Signaling refused: {e}")
        return 1
    finally:
        await coordinator.hangup()
        await transport.close()
    return 0


def issue_token(args: argparse.Namespace) -> int:
    config = get_config()
    if not config.auth_secret:
        logger.error("Set SKILLSWAP_AUTH_SECRET to issue tokens.")
        return 1
    auth = CallerAuth(
        config.auth_secret,
        algorithm=config.auth_algorithm,
        token_ttl_hours=config.token_ttl_hours,
    )
    print(auth.issue_token(args.user))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="skillswap_rtc", description="SkillSwap call signaling")
    commands = parser.add_subparsers(dest="command")

    commands.add_parser("serve", help="Run the signaling API (default)")

    call_parser = commands.add_parser("call", help="Join the call of a booked session")
    call_parser.add_argument("--session", required=True, help="Booked session id")
    call_parser.add_argument("--token", default=os.getenv("SKILLSWAP_TOKEN"), help="Caller JWT")
    call_parser.add_argument("--user", help="Mint a token for this user id")
    call_parser.add_argument("--server", help="Signaling server URL")
    call_parser.add_argument("--record", help="Record remote media to this file")
    call_parser.add_argument("--poll", action="store_true", help="Poll instead of push")

    token_parser = commands.add_parser("token", help="Print a caller token")
    token_parser.add_argument("--user", required=True, help="User id (sub claim)")

    return parser


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if args.command == "call":
        return asyncio.run(call(args))
    if args.command == "token":
        return issue_token(args)
    return asyncio.run(serve())


if __name__ == "__main__":
    sys.exit(main())
