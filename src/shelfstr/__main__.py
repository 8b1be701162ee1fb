"""CLI entry point for shelfstr.

Three subcommands share one relay client built from the YAML config:

* ``feed``: print similarity relations; ``--follow`` keeps streaming new ones
  and serves Prometheus metrics until interrupted.
* ``profile``: batch-lookup profiles for one or more public keys.
* ``publish``: sign (with the key in ``PRIVATE_KEY``) and publish a
  similarity relation between two ISBNs.

Examples:
    ```bash
    python -m shelfstr feed --limit 20
    python -m shelfstr feed --follow --log-level DEBUG
    python -m shelfstr profile 3bf0c63f... 82341f88...
    python -m shelfstr publish 9781729527085 1639940251 0.92 --content "same vibe"
    ```
"""

import argparse
import asyncio
import datetime
import json
import logging
import signal
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from shelfstr.client import RelayClient
from shelfstr.core import ShelfstrError, start_metrics_server
from shelfstr.core.logger import Logger, StructuredFormatter
from shelfstr.core.yaml import load_yaml
from shelfstr.models import Profile, SimilarityRelation
from shelfstr.relay.configs import ClientConfig
from shelfstr.services.feed import SimilarityFeed
from shelfstr.utils.keys import ENV_PRIVATE_KEY, KeysSigner


DEFAULT_CONFIG = Path("config") / "client.yaml"
DEFAULT_FEED_LIMIT = 50
DEFAULT_LOAD_TIMEOUT = 5.0

logger = Logger("cli")


# =============================================================================
# Output
# =============================================================================


def format_relation(
    relation: SimilarityRelation,
    profiles: dict[str, Profile] | None = None,
) -> str:
    """Render one relation as a single line."""
    when = datetime.datetime.fromtimestamp(relation.created_at, datetime.UTC)
    profile = (profiles or {}).get(relation.author)
    author = profile.display if profile is not None else f"{relation.author[:8]}..."
    return (
        f"{when:%Y-%m-%d %H:%M} {author} {relation.item_a} ~ {relation.item_b} "
        f"score={relation.score:.2f}"
    )


def format_profile(profile: Profile) -> str:
    """Render one profile as a JSON line."""
    return json.dumps(
        {"pubkey": profile.pubkey, "loaded": profile.loaded, **profile.metadata.to_dict()},
        ensure_ascii=False,
        default=str,
    )


# =============================================================================
# Commands
# =============================================================================


async def run_feed(client: RelayClient, *, limit: int, timeout: float, follow: bool) -> int:
    """Print stored relations, then optionally stream new ones until signalled."""
    feed = SimilarityFeed(client, limit=limit)
    await feed.start()

    if not await feed.wait_loaded(timeout):
        logger.warning("feed_load_timeout", timeout_s=timeout)

    relations = feed.relations
    profiles = await client.fetch_profiles(r.author for r in relations) if relations else {}
    for relation in relations:
        print(format_relation(relation, profiles))  # noqa: T201
    if not relations:
        logger.info("feed_empty")

    if not follow:
        await feed.stop()
        return 0

    metrics_config = client.config.metrics
    metrics_server = await start_metrics_server(metrics_config)
    if metrics_config.enabled:
        logger.info(
            "metrics_server_started",
            host=metrics_config.host,
            port=metrics_config.port,
            path=metrics_config.path,
        )

    shutdown = asyncio.Event()
    printed = {r.id for r in relations}

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal", signal=sig.name)
        shutdown.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        while not shutdown.is_set():
            for relation in reversed(feed.relations):
                if relation.id not in printed:
                    printed.add(relation.id)
                    profile = client.profiles.peek(relation.author)
                    known = {relation.author: profile} if profile else None
                    print(format_relation(relation, known))  # noqa: T201
            if not feed.running:
                logger.warning("feed_interrupted", reason=feed.closed_reason)
                await feed.start()
            try:
                await asyncio.wait_for(shutdown.wait(), timeout=1.0)
            except TimeoutError:
                continue
        return 0
    finally:
        await feed.stop()
        await metrics_server.stop()
        if metrics_config.enabled:
            logger.info("metrics_server_stopped")


async def run_profile(client: RelayClient, pubkeys: Sequence[str]) -> int:
    """Print one JSON line per requested public key."""
    profiles = await client.fetch_profiles(pubkeys)
    for profile in profiles.values():
        print(format_profile(profile))  # noqa: T201
    found = sum(1 for p in profiles.values() if not p.metadata.is_empty)
    logger.info("profiles_fetched", requested=len(profiles), found=found)
    return 0


async def run_publish(
    client: RelayClient,
    item_a: str,
    item_b: str,
    score: float,
    content: str,
) -> int:
    """Publish a similarity relation and print its event id."""
    event = await client.publish_similarity(item_a, item_b, score, content)
    print(event.id)  # noqa: T201
    return 0


# =============================================================================
# Setup
# =============================================================================


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="shelfstr",
        description="Book similarity relations over Nostr",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Client config path (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument(
        "--relay",
        help="Relay URL, overriding relay_url from the config",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    feed = commands.add_parser("feed", help="Print similarity relations")
    feed.add_argument("--limit", type=int, default=DEFAULT_FEED_LIMIT, help="Stored events to load")
    feed.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_LOAD_TIMEOUT,
        help=f"Seconds to wait for stored events (default: {DEFAULT_LOAD_TIMEOUT})",
    )
    feed.add_argument(
        "--follow",
        action="store_true",
        help="Keep streaming new relations and serve metrics",
    )

    profile = commands.add_parser("profile", help="Look up profiles by public key")
    profile.add_argument("pubkeys", nargs="+", metavar="PUBKEY", help="Hex public keys")

    publish = commands.add_parser("publish", help="Publish a similarity relation")
    publish.add_argument("item_a", metavar="ISBN_A")
    publish.add_argument("item_b", metavar="ISBN_B")
    publish.add_argument("score", type=float, metavar="SCORE", help="Similarity in [0, 1]")
    publish.add_argument("--content", default="", help="Optional justification text")
    publish.add_argument(
        "--keys-env",
        default=ENV_PRIVATE_KEY,
        help=f"Environment variable holding the private key (default: {ENV_PRIVATE_KEY})",
    )

    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    """Configure the root logger with structured formatting.

    Installs a ``StructuredFormatter`` on a stderr handler so output from both
    ``Logger`` and plain ``logging.getLogger()`` calls shares one layout and
    stays separate from command output on stdout.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


def load_config(path: Path, relay: str | None = None) -> ClientConfig:
    """Load the client config, falling back to defaults when the file is absent."""
    data: dict[str, Any] = {}
    if path.exists():
        data = load_yaml(path)
    else:
        logger.debug("config_not_found", path=str(path))
    if relay:
        data["relay_url"] = relay
    return ClientConfig.from_dict(data)


async def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point: parse args, build the client, and run the command."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = load_config(args.config, args.relay)
        signer = KeysSigner.from_env(args.keys_env) if args.command == "publish" else None
    except (ShelfstrError, ValueError) as e:
        logger.error("config_invalid", error=str(e))
        return 2

    client = RelayClient(config, signer=signer)
    try:
        async with client:
            if args.command == "feed":
                return await run_feed(
                    client, limit=args.limit, timeout=args.timeout, follow=args.follow
                )
            if args.command == "profile":
                return await run_profile(client, args.pubkeys)
            return await run_publish(client, args.item_a, args.item_b, args.score, args.content)
    except (ShelfstrError, ValueError) as e:
        logger.error(f"{args.command}_failed", error=str(e), error_type=type(e).__name__)
        return 1
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
