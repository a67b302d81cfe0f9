"""
turntable-client CLI entry point.

Runs a room bot, or performs a one-off song search.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from turntable_client import __version__
from turntable_client.app import TurntableBot
from turntable_client.client import TurntableClient
from turntable_client.config import Config, ConfigError, load_config
from turntable_client.exceptions import HandshakeFailure, SearchTimeoutError, TransportError

logger = logging.getLogger(__name__)

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_AUTH_ERROR = 2
EXIT_NETWORK_ERROR = 3

# Seconds to wait for the initial handshake in search mode
AUTH_TIMEOUT = 30.0


def setup_logging(level: str = "info") -> None:
    """Configure logging to stdout."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
        force=True,
    )


def parse_args(argv: "list[str] | None" = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="turntable-client",
        description="Turntable room bot and client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  turntable-client --config config.yaml
  turntable-client --user-id ID --user-auth AUTH --room-id ROOM
  turntable-client --config config.yaml --search "daft punk" --json

Environment Variables:
  TURNTABLE_HOST, TURNTABLE_USER_ID, TURNTABLE_USER_AUTH, TURNTABLE_ROOM_ID
  TURNTABLE_PRESENCE_INTERVAL, TURNTABLE_LOG_LEVEL, TURNTABLE_DEBUG
""",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    # Search mode
    parser.add_argument(
        "--search",
        metavar="QUERY",
        help="Search for songs, print the results and exit",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output as JSON (used with --search)",
    )

    # Configuration
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("./config.yaml"),
        metavar="PATH",
        help="Path to config file (default: ./config.yaml)",
    )

    # Account
    account_group = parser.add_argument_group("Account")
    account_group.add_argument("--host", metavar="TEXT", help="Chat server host")
    account_group.add_argument("--user-id", metavar="TEXT", help="Turntable user id")
    account_group.add_argument("--user-auth", metavar="TEXT", help="Turntable auth token")
    account_group.add_argument("--room-id", metavar="TEXT", help="Room to join")

    # Logging
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        metavar="LEVEL",
        help="Log level: debug, info, warning, error",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Trace raw frames (needs --log-level debug)",
    )

    return parser.parse_args(argv)


def _set_nested(d: dict, path: tuple, value: Any) -> None:
    """Set a nested dictionary value."""
    for key in path[:-1]:
        d = d.setdefault(key, {})
    d[path[-1]] = value


def args_to_dict(args: argparse.Namespace) -> dict:
    """Convert argparse namespace to nested config dict."""
    result: dict = {}

    mappings = {
        "host": ("turntable", "host"),
        "user_id": ("turntable", "user_id"),
        "user_auth": ("turntable", "user_auth"),
        "room_id": ("turntable", "room_id"),
        "log_level": ("logging", "level"),
        "debug": ("logging", "debug"),
    }

    for arg_name, path in mappings.items():
        value = getattr(args, arg_name, None)
        # Only set --debug when given
        if value is None or (arg_name == "debug" and not value):
            continue
        _set_nested(result, path, value)

    return result


def log_config(config: Config) -> None:
    """Log configuration summary (without sensitive data)."""
    logger.info(f"Host: {config.turntable.host}")
    logger.info(f"User: {config.turntable.user_id}")
    logger.info(f"Room: {config.turntable.room_id}")
    if config.logging.debug:
        logger.info("Frame tracing enabled")


def format_results(pages: list, json_output: bool) -> str:
    """Render search pages for printing."""
    songs = [song for page in pages for song in page]
    if json_output:
        return json.dumps(
            {
                "songs": [
                    {
                        "id": s.id,
                        "artist": s.artist,
                        "title": s.title,
                        "length": s.length,
                        "source": s.source,
                    }
                    for s in songs
                ],
                "pages": len(pages),
                "count": len(songs),
            },
            indent=2,
        )

    if not songs:
        return "No songs found."
    lines = [f"Found {len(songs)} song(s) in {len(pages)} page(s):", ""]
    for s in songs:
        lines.append(f"  {s.artist} - {s.title} [{s.id}]")
    return "\n".join(lines)


async def run_search(config: Config, query: str, json_output: bool) -> int:
    """
    Connect, search once, and print results.

    Returns:
        Exit code
    """
    client = TurntableClient(config)
    try:
        await client.start()
        await client.wait_until_authenticated(timeout=AUTH_TIMEOUT)
        pages = await client.search_for_songs(query)
    finally:
        await client.stop()

    print(format_results(pages, json_output))
    return EXIT_SUCCESS


def main(argv: "list[str] | None" = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code: 0=success, 1=config error, 2=auth error, 3=network error
    """
    args = parse_args(argv)

    # Basic logging first (reconfigured after config load)
    setup_logging("info")

    try:
        config = load_config(args.config, args_to_dict(args))
        setup_logging(config.logging.level)
        log_config(config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    try:
        if args.search:
            return asyncio.run(run_search(config, args.search, args.json_output))

        logger.info(f"turntable-client v{__version__}")
        asyncio.run(TurntableBot(config).run())
        return EXIT_SUCCESS

    except HandshakeFailure as e:
        logger.error(f"Authentication failed: {e}")
        return EXIT_AUTH_ERROR

    except asyncio.TimeoutError as e:
        logger.error(f"Timed out: {e}")
        return EXIT_NETWORK_ERROR

    except SearchTimeoutError as e:
        logger.error(f"Search failed: {e}")
        return EXIT_NETWORK_ERROR

    except (TransportError, ConnectionError, OSError) as e:
        logger.error(f"Network error: {e}")
        return EXIT_NETWORK_ERROR

    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
