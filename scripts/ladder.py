#!/usr/bin/env python3
"""
Bot Ladder Operator CLI

Register bots, run game traffic and publish ladder statistics.

Usage:
    # Register two bots
    python scripts/ladder.py register Stardust PROTOSS bots/stardust
    python scripts/ladder.py register Purple ZERG bots/purple

    # Play 100 games, then publish
    python scripts/ladder.py run --games 100
    python scripts/ladder.py publish

    # Run until Ctrl-C, publishing every 10 minutes
    python scripts/ladder.py run --publish-every 600

    # Retire a bot
    python scripts/ladder.py disable Purple
"""

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from botladder.app import Ladder
from botladder.config import LadderConfig
from botladder.core.errors import LadderError


def cmd_register(ladder: Ladder, args) -> int:
    bot = ladder.register_bot(args.name, args.race, args.binary, parent=args.parent)
    print(f"Registered {bot.name} (id {bot.id}, {bot.race.value})")
    return 0


def cmd_set_enabled(ladder: Ladder, args) -> int:
    enabled = args.command == "enable"
    bot = ladder.set_enabled(args.name, enabled)
    print(f"{bot.name}: {'enabled' if bot.enabled else 'disabled'}")
    return 0


def cmd_list_bots(ladder: Ladder, args) -> int:
    bots = sorted(ladder.store.list_enabled_bots(), key=lambda b: b.rating, reverse=True)
    print(f"{'Name':<24} {'Race':<8} {'Rank':>4} {'Rating':>7}")
    print("-" * 46)
    for bot in bots:
        print(f"{bot.name:<24} {bot.race.value:<8} {bot.rank.code:>4} {bot.rating:>7}")
    return 0


def cmd_run(ladder: Ladder, args) -> int:
    if args.publish_every:
        ladder.publish_periodically(args.publish_every)

    if args.games:
        recorded = ladder.run_games(args.games, show_progress=not args.quiet)
        print(f"Recorded {recorded} games")
        ladder.stop()
        return 0

    ladder.start()
    print(f"Ladder running with {ladder.pool.worker_count} workers, Ctrl-C to stop")
    try:
        while ladder.pool.is_running:
            ladder.pool.join(timeout=1.0)
    except KeyboardInterrupt:
        print("\nStopping, waiting for games in progress...")
    finally:
        ladder.stop()
    ladder.join()
    print(
        f"Recorded {ladder.pool.games_recorded} games, "
        f"{ladder.pool.execution_faults} abandoned"
    )
    return 0


def cmd_publish(ladder: Ladder, args) -> int:
    snapshot = ladder.prepare_publish()
    print(
        f"Published {len(snapshot.results)} results for {len(snapshot.bots)} bots "
        f"({len(snapshot.rankings)} ranking updates)"
    )
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Operate a bot-vs-bot ladder",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="YAML configuration file (default: built-in defaults)",
    )
    parser.add_argument(
        "--database",
        type=str,
        default=None,
        help="SQLAlchemy database URL (overrides the configuration)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    register = subparsers.add_parser("register", help="Register a bot")
    register.add_argument("name")
    register.add_argument("race", help="PROTOSS, ZERG, TERRAN or RANDOM")
    register.add_argument("binary", help="Path to the bot binary")
    register.add_argument("--parent", default=None, help="Previous version of this bot")
    register.set_defaults(handler=cmd_register)

    for name in ("enable", "disable"):
        toggle = subparsers.add_parser(name, help=f"{name.capitalize()} a bot")
        toggle.add_argument("name")
        toggle.set_defaults(handler=cmd_set_enabled)

    list_bots = subparsers.add_parser("list-bots", help="List enabled bots by rating")
    list_bots.set_defaults(handler=cmd_list_bots)

    run = subparsers.add_parser("run", help="Run game traffic")
    run.add_argument("--games", "-g", type=int, default=None, help="Stop after N games")
    run.add_argument("--workers", "-w", type=int, default=None, help="Override worker count")
    run.add_argument(
        "--publish-every",
        type=float,
        default=None,
        help="Publish every N seconds while running",
    )
    run.add_argument("--quiet", "-q", action="store_true", help="No progress bar")
    run.set_defaults(handler=cmd_run)

    publish = subparsers.add_parser("publish", help="Run one publish cycle")
    publish.set_defaults(handler=cmd_publish)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = LadderConfig.from_yaml(args.config) if args.config else LadderConfig()
        if args.database:
            config.database_url = args.database
        if getattr(args, "workers", None):
            config.worker_count = args.workers
            config.validate()
        ladder = Ladder.from_config(config)
        return args.handler(ladder, args)
    except LadderError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
